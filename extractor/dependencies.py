"""Process-wide collaborators and FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from extractor.config import Settings, settings
from extractor.services.billing_service import BillingAccountant
from extractor.services.extraction_service import ExtractionInvoker
from extractor.services.ghl_client import GHLClient
from extractor.services.pipeline_service import ExtractionPipeline
from extractor.services.token_service import CredentialCache, TokenLifecycleManager


def build_token_manager(config: Settings, ghl_client: GHLClient, cache: Optional[CredentialCache] = None):
    return TokenLifecycleManager(
        ghl_client,
        client_id=config.ghl_client_id,
        client_secret=config.ghl_client_secret,
        cache=cache,
        request_threshold_hours=config.request_refresh_threshold_hours,
        sweep_threshold_hours=config.sweep_refresh_threshold_hours,
    )


def build_pipeline(config: Settings = settings) -> ExtractionPipeline:
    ghl_client = GHLClient(
        api_domain=config.ghl_api_domain,
        api_version=config.ghl_api_version,
        timeout_seconds=config.ghl_timeout_seconds,
        token_timeout_seconds=config.token_refresh_timeout_seconds,
        wallet_timeout_seconds=config.wallet_timeout_seconds,
    )
    token_manager = build_token_manager(config, ghl_client, CredentialCache())
    invoker = ExtractionInvoker(
        default_api_key=config.openai_api_key,
        default_model=config.openai_default_model,
        default_org_id=config.openai_org_id,
        base_url=config.openai_base_url,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
        timeout_seconds=config.llm_timeout_seconds,
    )
    billing = BillingAccountant(
        ghl_client,
        token_manager,
        app_id=config.ghl_app_id,
        agency_meter_id=config.agency_meter_id,
        direct_meter_id=config.direct_meter_id,
        default_messages_included=config.default_messages_included,
        default_overage_price=config.default_overage_price,
        refresh_threshold_hours=config.request_refresh_threshold_hours,
    )
    return ExtractionPipeline(
        ghl_client,
        token_manager,
        invoker,
        billing,
        history_limit=config.extraction_history_limit,
        refresh_threshold_hours=config.request_refresh_threshold_hours,
    )


def get_pipeline(request: Request) -> ExtractionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline()
        request.app.state.pipeline = pipeline
    return pipeline


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_TOKEN not configured",
        )
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
