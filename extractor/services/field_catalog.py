"""Extraction-field catalog for a location.

Each configured field is resolved once, at load time, into either a
``StandardField`` (a first-class contact attribute) or a ``CustomField``
(an opaque CRM custom-field id). Nothing downstream inspects the shape of
the target key again.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import ExtractionField

logger = get_logger("field_catalog")

POLICY_ALWAYS = "always"
POLICY_IF_EMPTY = "if_empty"
POLICY_NEVER = "never"
OVERWRITE_POLICIES = (POLICY_ALWAYS, POLICY_IF_EMPTY, POLICY_NEVER)

KIND_STANDARD = "standard"
KIND_CUSTOM = "custom"

STANDARD_KEY_PREFIX = "contact."

# Catalog attribute names that differ from the CRM's contact attribute names.
STANDARD_NAME_MAP = {
    "date_of_birth": "dateOfBirth",
    "first_name": "firstName",
    "last_name": "lastName",
    "postal_code": "postalCode",
    "phone_raw": "phone",
    "full_address": "address1",
    "company_name": "companyName",
}

VALID_STANDARD_FIELDS = frozenset(
    {
        "firstName",
        "lastName",
        "name",
        "email",
        "phone",
        "dnd",
        "dndSettings",
        "companyName",
        "address1",
        "address",
        "city",
        "state",
        "country",
        "postalCode",
        "website",
        "dateOfBirth",
        "tags",
        "source",
        "timezone",
        "gender",
    }
)


@dataclass(frozen=True)
class StandardField:
    ghl_name: str


@dataclass(frozen=True)
class CustomField:
    field_id: str


FieldTarget = Union[StandardField, CustomField]


class UnresolvableFieldError(ValueError):
    pass


@dataclass(frozen=True)
class CatalogField:
    id: str
    name: str
    target_key: str
    prompt_key: str
    target: FieldTarget
    field_type: str
    options: Tuple = ()
    is_required: bool = False
    overwrite_policy: str = POLICY_ALWAYS
    description: str = ""
    sort_order: int = 0

    @property
    def kind(self) -> str:
        return KIND_STANDARD if isinstance(self.target, StandardField) else KIND_CUSTOM

    @property
    def is_tags(self) -> bool:
        return isinstance(self.target, StandardField) and self.target.ghl_name == "tags"

    def manifest_entry(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.field_type,
            "target_key": self.target_key,
            "prompt_key": self.prompt_key,
            "required": self.is_required,
            "kind": self.kind,
            "overwrite_policy": self.overwrite_policy,
            "description": self.description,
            "options": list(self.options),
        }


@dataclass
class FieldCatalog:
    fields: List[CatalogField] = field(default_factory=list)
    unresolvable: List[dict] = field(default_factory=list)
    _index: Dict[str, CatalogField] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        for entry in self.fields:
            self._index.setdefault(entry.target_key, entry)
        for entry in self.fields:
            self._index.setdefault(entry.prompt_key, entry)

    def __iter__(self) -> Iterator[CatalogField]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def lookup(self, key: str) -> Optional[CatalogField]:
        """Find a field by target key, falling back to its prompt key."""
        return self._index.get(key)

    def manifest(self) -> List[dict]:
        return [entry.manifest_entry() for entry in self.fields]


def camel_to_snake(name: str) -> str:
    return re.sub(r"[A-Z]", lambda match: f"_{match.group(0).lower()}", name).lower().lstrip("_")


def sanitize_field_name(name: str) -> str:
    sanitized = re.sub(r"[^a-z0-9\s]", "", (name or "").lower())
    sanitized = re.sub(r"\s+", "_", sanitized)
    sanitized = re.sub(r"_+", "_", sanitized)
    return sanitized.strip("_")


def normalize_policy(policy: Optional[str]) -> str:
    value = (policy or POLICY_ALWAYS).strip().lower()
    if value not in OVERWRITE_POLICIES:
        logger.warning(f"Unknown overwrite policy '{policy}', treating as '{POLICY_ALWAYS}'")
        return POLICY_ALWAYS
    return value


def resolve_target(row: ExtractionField) -> FieldTarget:
    """Turn a catalog row into its tagged target. Raises UnresolvableFieldError."""
    key = (row.target_ghl_key or "").strip()
    if not key:
        raise UnresolvableFieldError(f"Field '{row.field_name}' has no target key")

    kind = (row.field_kind or KIND_CUSTOM).lower()
    if kind == KIND_CUSTOM:
        return CustomField(field_id=key)
    if kind != KIND_STANDARD:
        raise UnresolvableFieldError(f"Field '{row.field_name}' has unknown kind '{row.field_kind}'")

    attribute = key[len(STANDARD_KEY_PREFIX):] if key.startswith(STANDARD_KEY_PREFIX) else key
    ghl_name = STANDARD_NAME_MAP.get(attribute, attribute)
    if ghl_name not in VALID_STANDARD_FIELDS:
        raise UnresolvableFieldError(f"Field '{row.field_name}' targets unsupported contact attribute '{attribute}'")
    return StandardField(ghl_name=ghl_name)


def prompt_key_for(row: ExtractionField, target: FieldTarget) -> str:
    if row.field_key:
        return row.field_key
    if isinstance(target, CustomField):
        original = row.original_ghl_field_data or {}
        if original.get("fieldKey"):
            return original["fieldKey"]
        return sanitize_field_name(row.field_name) or target.field_id
    attribute = row.target_ghl_key.split(".")[-1]
    return camel_to_snake(attribute)


def build_catalog(rows: List[ExtractionField]) -> FieldCatalog:
    fields = []
    unresolvable = []
    for row in sorted(rows, key=lambda item: (item.sort_order or 0, item.field_name or "")):
        try:
            target = resolve_target(row)
        except UnresolvableFieldError as exc:
            logger.warning(str(exc), extra={"context": {"field_id": str(row.id)}})
            unresolvable.append({"id": str(row.id), "name": row.field_name, "error": str(exc)})
            continue

        fields.append(
            CatalogField(
                id=str(row.id),
                name=row.field_name,
                target_key=row.target_ghl_key,
                prompt_key=prompt_key_for(row, target),
                target=target,
                field_type=(row.field_type or "TEXT").upper(),
                options=tuple(row.picklist_options or ()),
                is_required=bool(row.is_required),
                overwrite_policy=normalize_policy(row.overwrite_policy),
                description=row.description or "",
                sort_order=row.sort_order or 0,
            )
        )
    return FieldCatalog(fields=fields, unresolvable=unresolvable)


def load_catalog(db: Session, config_id) -> FieldCatalog:
    rows = (
        db.query(ExtractionField)
        .filter(ExtractionField.config_id == config_id)
        .order_by(ExtractionField.sort_order.asc())
        .all()
    )
    return build_catalog(rows)
