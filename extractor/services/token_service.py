"""OAuth credential lifecycle for CRM accounts.

Refreshes are written as a compare-and-swap on the previously known refresh
token, so two overlapping refreshes for one account cannot both believe they
hold the latest pair.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import LocationConfig
from extractor.services.ghl_client import GHLAPIError, GHLClient
from extractor.services.result import ErrorKind, Result

logger = get_logger("tokens")

PLACEHOLDER_TOKEN_PREFIXES = ("dev-", "test-")
DEFAULT_EXPIRES_IN_SECONDS = 86400


@dataclass(frozen=True)
class CRMCredential:
    config_id: object
    account_id: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at: Optional[datetime]

    @classmethod
    def from_config(cls, config: LocationConfig) -> "CRMCredential":
        return cls(
            config_id=config.id,
            account_id=config.ghl_account_id,
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            expires_at=config.token_expires_at,
        )

    @property
    def is_placeholder(self) -> bool:
        token = self.access_token or ""
        return token.startswith(PLACEHOLDER_TOKEN_PREFIXES)

    def hours_until_expiry(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.expires_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - now).total_seconds() / 3600

    def needs_refresh(self, threshold_hours: float, now: Optional[datetime] = None) -> bool:
        """No expiry recorded means the token is treated as non-expiring."""
        hours = self.hours_until_expiry(now)
        return hours is not None and hours <= threshold_hours


class CredentialCache:
    """Per-process cache of the latest known credential for each config."""

    def __init__(self):
        self._entries: Dict[str, CRMCredential] = {}

    def get(self, config_id) -> Optional[CRMCredential]:
        return self._entries.get(str(config_id))

    def put(self, credential: CRMCredential) -> None:
        self._entries[str(credential.config_id)] = credential

    def invalidate(self, config_id) -> None:
        self._entries.pop(str(config_id), None)

    def clear(self) -> None:
        self._entries.clear()


def describe_refresh_error(exc: GHLAPIError) -> str:
    if exc.status_code == 400:
        return "Invalid refresh token - may need to reinstall app"
    if exc.status_code == 401:
        return "Unauthorized - refresh token may be expired"
    return f"Token refresh failed: {exc.status_code} - {exc.body[:500]}"


class TokenLifecycleManager:
    def __init__(
        self,
        ghl_client: GHLClient,
        client_id: Optional[str],
        client_secret: Optional[str],
        cache: Optional[CredentialCache] = None,
        request_threshold_hours: float = 1.0,
        sweep_threshold_hours: float = 24.0,
    ):
        self.ghl_client = ghl_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.cache = cache if cache is not None else CredentialCache()
        self.request_threshold_hours = request_threshold_hours
        self.sweep_threshold_hours = sweep_threshold_hours

    def get_valid_access_token(
        self,
        db: Session,
        config: LocationConfig,
        threshold_hours: Optional[float] = None,
    ) -> Result[str]:
        """Access token good for at least ``threshold_hours``, refreshing if needed."""
        threshold = self.request_threshold_hours if threshold_hours is None else threshold_hours

        cached = self.cache.get(config.id)
        if cached and cached.access_token and not cached.needs_refresh(threshold):
            return Result.success(cached.access_token)

        credential = CRMCredential.from_config(config)
        if not credential.access_token and not credential.refresh_token:
            return Result.failure(
                f"No CRM credential stored for location {config.ghl_account_id}",
                ErrorKind.UNAUTHORIZED,
            )
        if credential.access_token and not credential.needs_refresh(threshold):
            self.cache.put(credential)
            return Result.success(credential.access_token)

        refreshed = self.refresh(db, credential)
        if not refreshed.ok:
            return refreshed
        return Result.success(refreshed.value.access_token)

    def refresh(self, db: Session, credential: CRMCredential) -> Result[CRMCredential]:
        """Exchange the refresh token and persist the new pair (compare-and-swap)."""
        if not credential.refresh_token:
            return Result.failure("No refresh token stored", ErrorKind.UNAUTHORIZED)
        if not self.client_id or not self.client_secret:
            return Result.failure("OAuth client credentials are not configured", ErrorKind.CONFIG_MISSING)

        log_context = {"config_id": str(credential.config_id), "location_id": credential.account_id}
        try:
            data = self.ghl_client.refresh_token(self.client_id, self.client_secret, credential.refresh_token)
        except GHLAPIError as exc:
            message = describe_refresh_error(exc)
            logger.error(message, extra={"context": {**log_context, "status": exc.status_code}})
            return Result.failure(message, ErrorKind.UNAUTHORIZED, detail={"body": exc.body[:1000]}, status_code=exc.status_code)
        except httpx.TimeoutException:
            logger.error("Token refresh timed out", extra={"context": log_context})
            return Result.failure("Token refresh timed out", ErrorKind.TIMEOUT)
        except httpx.HTTPError as exc:
            logger.error(f"Token refresh transport error: {exc}", extra={"context": log_context})
            return Result.failure(f"Token refresh failed: {exc}", ErrorKind.UPSTREAM)

        access_token = data.get("access_token")
        if not access_token:
            return Result.failure("Token endpoint returned no access token", ErrorKind.UPSTREAM, detail=list(data))

        now = datetime.now(timezone.utc)
        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        rotated = CRMCredential(
            config_id=credential.config_id,
            account_id=credential.account_id,
            access_token=access_token,
            refresh_token=data.get("refresh_token") or credential.refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
        )

        updated = (
            db.query(LocationConfig)
            .filter(
                LocationConfig.id == credential.config_id,
                LocationConfig.refresh_token == credential.refresh_token,
            )
            .update(
                {
                    LocationConfig.access_token: rotated.access_token,
                    LocationConfig.refresh_token: rotated.refresh_token,
                    LocationConfig.token_expires_at: rotated.expires_at,
                    LocationConfig.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        self.cache.invalidate(credential.config_id)

        if not updated:
            return self._resolve_lost_race(db, credential)

        self.cache.put(rotated)
        logger.info(
            "Token refreshed",
            extra={"context": {**log_context, "expires_at": rotated.expires_at.isoformat()}},
        )
        return Result.success(rotated)

    def _resolve_lost_race(self, db: Session, credential: CRMCredential) -> Result[CRMCredential]:
        current = (
            db.query(LocationConfig)
            .populate_existing()
            .filter(LocationConfig.id == credential.config_id)
            .first()
        )
        if current and current.access_token and current.refresh_token != credential.refresh_token:
            newer = CRMCredential.from_config(current)
            self.cache.put(newer)
            logger.warning(
                "Concurrent token refresh detected, using the stored newer credential",
                extra={"context": {"config_id": str(credential.config_id)}},
            )
            return Result.success(newer)
        return Result.failure("Credential changed during refresh", ErrorKind.UNAUTHORIZED)

    def sweep(self, db: Session, threshold_hours: Optional[float] = None) -> dict:
        """Refresh every active credential nearing expiry. Per-account failures are recorded."""
        threshold = self.sweep_threshold_hours if threshold_hours is None else threshold_hours
        now = datetime.now(timezone.utc)

        configs = (
            db.query(LocationConfig)
            .filter(
                LocationConfig.is_active.is_(True),
                LocationConfig.refresh_token.isnot(None),
                LocationConfig.token_expires_at.isnot(None),
            )
            .all()
        )

        results = []
        for config in configs:
            credential = CRMCredential.from_config(config)
            if credential.is_placeholder or not credential.needs_refresh(threshold, now):
                continue

            hours = credential.hours_until_expiry(now)
            business_name = config.business_name
            try:
                outcome = self.refresh(db, credential)
            except SQLAlchemyError as exc:
                db.rollback()
                outcome = Result.failure(f"Failed to store refreshed token: {exc}", ErrorKind.DB_ERROR)

            results.append(
                {
                    "config_id": str(credential.config_id),
                    "location_id": credential.account_id,
                    "business_name": business_name,
                    "success": outcome.ok,
                    "error": outcome.error,
                    "hours_until_expiry": round(hours, 2),
                }
            )

        refreshed = sum(1 for item in results if item["success"])
        logger.info(
            "Token sweep finished",
            extra={"context": {"checked": len(configs), "attempted": len(results), "refreshed": refreshed}},
        )
        return {"refreshed": refreshed, "total": len(results), "results": results}
