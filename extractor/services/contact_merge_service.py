"""Merge extracted values into a CRM contact under per-field overwrite policies."""

from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx

from extractor.logging_config import get_logger
from extractor.services.field_catalog import (
    POLICY_IF_EMPTY,
    POLICY_NEVER,
    VALID_STANDARD_FIELDS,
    CatalogField,
    CustomField,
    FieldCatalog,
    StandardField,
)
from extractor.services.ghl_client import GHLAPIError, GHLClient
from extractor.services.result import ErrorKind, Result

logger = get_logger("contact_merge")

READ_ONLY_CONTACT_FIELDS = frozenset({"id", "locationId", "dateAdded", "dateUpdated", "lastActivity"})

SKIP_EMPTY_VALUE = "empty_value"
SKIP_UNKNOWN_FIELD = "unknown_field"
SKIP_POLICY_NEVER = "policy_never"
SKIP_NOT_EMPTY = "existing_value"
SKIP_NO_NEW_TAGS = "no_new_tags"


@dataclass
class MergePlan:
    payload: dict = field(default_factory=dict)
    updated_fields: List[str] = field(default_factory=list)
    skipped_fields: List[dict] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.payload

    def skip(self, key: str, reason: str) -> None:
        self.skipped_fields.append({"key": key, "reason": reason})


@dataclass
class MergeOutcome:
    contact_id: str
    updated_fields: List[str]
    skipped_fields: List[dict]
    response: Optional[dict] = None

    @property
    def update_count(self) -> int:
        return len(self.updated_fields)


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _as_tag_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return [str(tag).strip() for tag in value if str(tag).strip()]


def current_value(contact: dict, entry: CatalogField) -> Any:
    target = entry.target
    if isinstance(target, StandardField):
        return contact.get(target.ghl_name)
    for item in contact.get("customFields") or contact.get("customField") or []:
        if item.get("id") == target.field_id:
            return item.get("value", item.get("fieldValue"))
    return None


def merge_tags(existing: Any, new: Any) -> List[str]:
    merged = _as_tag_list(existing)
    for tag in _as_tag_list(new):
        if tag not in merged:
            merged.append(tag)
    return merged


def sanitize_payload(payload: dict) -> dict:
    """Drop read-only keys and anything the CRM does not accept on update."""
    return {
        key: value
        for key, value in payload.items()
        if key not in READ_ONLY_CONTACT_FIELDS and (key in VALID_STANDARD_FIELDS or key == "customFields")
    }


def plan_contact_update(contact: dict, values: dict, catalog: FieldCatalog) -> MergePlan:
    """Diff extracted values against the contact and build the minimal update payload."""
    plan = MergePlan()
    custom_fields = []

    for key, value in values.items():
        if is_empty_value(value):
            plan.skip(key, SKIP_EMPTY_VALUE)
            continue

        entry = catalog.lookup(key)
        if entry is None:
            plan.skip(key, SKIP_UNKNOWN_FIELD)
            continue

        existing = current_value(contact, entry)
        if entry.overwrite_policy == POLICY_NEVER:
            plan.skip(entry.target_key, SKIP_POLICY_NEVER)
            continue
        if entry.overwrite_policy == POLICY_IF_EMPTY and not is_empty_value(existing):
            plan.skip(entry.target_key, SKIP_NOT_EMPTY)
            continue

        target = entry.target
        if isinstance(target, CustomField):
            custom_fields.append({"id": target.field_id, "value": value})
        elif entry.is_tags:
            merged = merge_tags(existing, value)
            if merged == _as_tag_list(existing):
                plan.skip(entry.target_key, SKIP_NO_NEW_TAGS)
                continue
            plan.payload["tags"] = merged
        else:
            plan.payload[target.ghl_name] = value
        plan.updated_fields.append(entry.target_key)

    if custom_fields:
        plan.payload["customFields"] = custom_fields
    plan.payload = sanitize_payload(plan.payload)
    return plan


def _upstream_failure(message: str, exc: Exception) -> Result:
    if isinstance(exc, httpx.TimeoutException):
        return Result.failure(f"{message}: timed out", ErrorKind.TIMEOUT)
    if isinstance(exc, GHLAPIError):
        kind = ErrorKind.UNAUTHORIZED if exc.status_code == 401 else ErrorKind.UPSTREAM
        return Result.failure(message, kind, detail={"body": exc.body[:2000]}, status_code=exc.status_code)
    return Result.failure(f"{message}: {exc}", ErrorKind.UPSTREAM)


def merge_contact(
    ghl_client: GHLClient,
    access_token: str,
    contact_id: str,
    values: dict,
    catalog: FieldCatalog,
) -> Result[MergeOutcome]:
    """Read the contact, apply overwrite policies, and send only what changed."""
    try:
        contact = ghl_client.get_contact(access_token, contact_id)
    except (GHLAPIError, httpx.HTTPError) as exc:
        return _upstream_failure("Failed to fetch contact", exc)
    if contact is None:
        return Result.failure(f"Contact {contact_id} not found", ErrorKind.NOT_FOUND)

    plan = plan_contact_update(contact, values, catalog)
    if plan.is_empty:
        logger.info(
            "No contact changes to send",
            extra={"context": {"contact_id": contact_id, "skipped": len(plan.skipped_fields)}},
        )
        return Result.success(MergeOutcome(contact_id, [], plan.skipped_fields))

    try:
        response = ghl_client.update_contact(access_token, contact_id, plan.payload)
    except (GHLAPIError, httpx.HTTPError) as exc:
        failure = _upstream_failure("Contact update rejected", exc)
        failure.detail = {**(failure.detail or {}), "attempted_fields": plan.updated_fields}
        return failure

    logger.info(
        "Contact updated",
        extra={
            "context": {
                "contact_id": contact_id,
                "updated_fields": plan.updated_fields,
                "skipped": len(plan.skipped_fields),
            }
        },
    )
    return Result.success(MergeOutcome(contact_id, plan.updated_fields, plan.skipped_fields, response))
