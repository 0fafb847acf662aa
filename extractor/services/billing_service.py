"""Monthly quota tracking, wallet gating and metered overage charges."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import LocationConfig, LocationSubscription, SubscriptionPlan, UsageLog, UsageTracking
from extractor.services.ghl_client import GHLAPIError, GHLClient
from extractor.services.result import ErrorKind, Result
from extractor.services.token_service import TokenLifecycleManager

logger = get_logger("billing")

OVERAGE_UNITS = 1


@dataclass
class UsagePlan:
    code: str
    messages_included: Optional[int]
    overage_price: float

    @property
    def is_unlimited(self) -> bool:
        return self.messages_included is None


@dataclass
class BillingDecision:
    location_id: str
    month_year: str
    messages_used: int
    plan: UsagePlan
    is_overage: bool = False
    meter_id: Optional[str] = None
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    billing_token: Optional[str] = None
    funds_check_error: Optional[str] = None


def month_key(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


class BillingAccountant:
    def __init__(
        self,
        ghl_client: GHLClient,
        token_manager: TokenLifecycleManager,
        app_id: Optional[str],
        agency_meter_id: Optional[str],
        direct_meter_id: Optional[str],
        default_messages_included: int = 100,
        default_overage_price: float = 0.08,
        refresh_threshold_hours: float = 1.0,
    ):
        self.ghl_client = ghl_client
        self.token_manager = token_manager
        self.app_id = app_id
        self.agency_meter_id = agency_meter_id
        self.direct_meter_id = direct_meter_id
        self.default_messages_included = default_messages_included
        self.default_overage_price = default_overage_price
        self.refresh_threshold_hours = refresh_threshold_hours

    def resolve_plan(self, db: Session, config: LocationConfig) -> UsagePlan:
        if config.is_agency:
            return UsagePlan(code="agency", messages_included=None, overage_price=0.0)

        subscription = (
            db.query(LocationSubscription)
            .filter(
                LocationSubscription.location_id == config.ghl_account_id,
                LocationSubscription.is_active.is_(True),
            )
            .first()
        )
        if subscription:
            plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == subscription.plan_id).first()
            if plan:
                return UsagePlan(
                    code=plan.code,
                    messages_included=plan.messages_included,
                    overage_price=float(plan.overage_price),
                )
        return UsagePlan(
            code="free",
            messages_included=self.default_messages_included,
            overage_price=self.default_overage_price,
        )

    def monthly_usage(self, db: Session, location_id: str, month_year: str) -> int:
        row = (
            db.query(UsageTracking)
            .filter(UsageTracking.location_id == location_id, UsageTracking.month_year == month_year)
            .first()
        )
        return int(row.messages_used) if row else 0

    def _billing_entity(self, db: Session, config: LocationConfig) -> LocationConfig:
        """Agency install pays for its sub-accounts when one exists, otherwise the location pays."""
        if config.is_agency_sub_account:
            agency = (
                db.query(LocationConfig)
                .filter(
                    LocationConfig.ghl_user_type == "agency",
                    LocationConfig.ghl_company_id == config.agency_ghl_id,
                    LocationConfig.is_active.is_(True),
                )
                .first()
            )
            if agency:
                return agency
        return config

    def evaluate(self, db: Session, config: LocationConfig, now: Optional[datetime] = None) -> Result[BillingDecision]:
        """Gate one extraction. Insufficient funds fails before any LLM spend."""
        location_id = config.ghl_account_id
        month_year = month_key(now)
        plan = self.resolve_plan(db, config)
        used = self.monthly_usage(db, location_id, month_year)

        decision = BillingDecision(
            location_id=location_id,
            month_year=month_year,
            messages_used=used,
            plan=plan,
        )
        if plan.is_unlimited or used < plan.messages_included:
            return Result.success(decision)

        decision.is_overage = True
        decision.meter_id = self.agency_meter_id if config.agency_ghl_id else self.direct_meter_id

        entity = self._billing_entity(db, config)
        decision.company_id = entity.ghl_company_id or config.ghl_company_id
        decision.user_id = config.ghl_user_id

        token = self.token_manager.get_valid_access_token(db, entity, self.refresh_threshold_hours)
        if not token.ok:
            return Result.failure(
                f"Billing entity token unavailable: {token.error}",
                ErrorKind.UNAUTHORIZED,
                detail=token.detail,
                status_code=token.status_code,
            )
        decision.billing_token = token.value

        log_context = {
            "location_id": location_id,
            "messages_used": used,
            "messages_included": plan.messages_included,
            "meter_id": decision.meter_id,
        }
        try:
            has_funds = self.ghl_client.check_funds(token.value, decision.company_id)
        except (GHLAPIError, httpx.HTTPError) as exc:
            # wallet outages degrade to proceeding with the extraction
            decision.funds_check_error = str(exc)
            logger.warning(f"Wallet funds check failed, proceeding: {exc}", extra={"context": log_context})
            return Result.success(decision)

        if not has_funds:
            logger.warning("Insufficient wallet funds for overage", extra={"context": log_context})
            return Result.failure(
                "Insufficient wallet funds for overage usage",
                ErrorKind.PAYMENT_REQUIRED,
                detail={"messages_used": used, "messages_included": plan.messages_included},
            )

        logger.info("Overage approved", extra={"context": log_context})
        return Result.success(decision)

    def charge(
        self,
        db: Session,
        decision: BillingDecision,
        usage_log_id,
        conversation_id: Optional[str] = None,
        is_agency_key: bool = False,
        now: Optional[datetime] = None,
    ) -> Result[Optional[str]]:
        """Post one metered charge per usage log. Repeat calls return the stored charge id."""
        if not decision.is_overage:
            return Result.success(None)

        log = db.query(UsageLog).filter(UsageLog.id == usage_log_id).first()
        if log is None:
            return Result.failure(f"Usage log {usage_log_id} not found", ErrorKind.NOT_FOUND)
        if log.ghl_charge_id:
            return Result.success(log.ghl_charge_id)
        if not decision.meter_id or not self.app_id or not decision.billing_token:
            logger.warning(
                "Overage charge skipped, billing is not configured",
                extra={"context": {"location_id": decision.location_id, "usage_log_id": str(usage_log_id)}},
            )
            return Result.failure("Wallet meter or app id not configured", ErrorKind.CONFIG_MISSING)

        now = now or datetime.now(timezone.utc)
        payload = {
            "appId": self.app_id,
            "meterId": decision.meter_id,
            "eventId": str(usage_log_id),
            "userId": decision.user_id,
            "locationId": decision.location_id,
            "companyId": decision.company_id,
            "units": OVERAGE_UNITS,
            "description": f"Data extraction overage ({conversation_id or 'manual run'})",
            "eventTime": now.isoformat(),
        }
        try:
            charge_id = self.ghl_client.create_charge(decision.billing_token, payload)
        except httpx.TimeoutException:
            return Result.failure("Wallet charge timed out", ErrorKind.TIMEOUT)
        except GHLAPIError as exc:
            return Result.failure(
                "Wallet charge rejected",
                ErrorKind.UPSTREAM,
                detail={"body": exc.body[:1000]},
                status_code=exc.status_code,
            )
        except httpx.HTTPError as exc:
            return Result.failure(f"Wallet charge failed: {exc}", ErrorKind.UPSTREAM)

        customer_cost = self.customer_cost(decision, is_agency_key)
        log.ghl_charge_id = charge_id
        log.meter_id = decision.meter_id
        log.billed_units = OVERAGE_UNITS
        log.customer_cost_estimate = customer_cost
        db.commit()

        logger.info(
            "Overage charged",
            extra={
                "context": {
                    "usage_log_id": str(usage_log_id),
                    "charge_id": charge_id,
                    "meter_id": decision.meter_id,
                    "customer_cost": customer_cost,
                }
            },
        )
        return Result.success(charge_id)

    def customer_cost(self, decision: BillingDecision, is_agency_key: bool = False) -> float:
        """Agency-key attempts cost the customer nothing."""
        if is_agency_key:
            return 0.0
        return round(OVERAGE_UNITS * decision.plan.overage_price, 6)

    def record_usage(
        self,
        db: Session,
        location_id: str,
        tokens: int,
        cost: float = 0.0,
        now: Optional[datetime] = None,
    ) -> None:
        """Count one successful extraction against the location's monthly quota."""
        now = now or datetime.now(timezone.utc)
        stmt = insert(UsageTracking).values(
            id=uuid.uuid4(),
            location_id=location_id,
            month_year=month_key(now),
            messages_used=1,
            tokens_used=tokens,
            cost_estimate=cost,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["location_id", "month_year"],
            set_={
                "messages_used": UsageTracking.messages_used + 1,
                "tokens_used": UsageTracking.tokens_used + stmt.excluded.tokens_used,
                "cost_estimate": UsageTracking.cost_estimate + stmt.excluded.cost_estimate,
                "updated_at": now,
            },
        )
        db.execute(stmt)
        db.commit()
