import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from extractor.models import ExtractionField, LocationConfig
from extractor.services.field_catalog import build_catalog


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


def make_config(**overrides) -> LocationConfig:
    values = {
        "id": uuid.uuid4(),
        "ghl_account_id": "loc-1",
        "ghl_company_id": "company-1",
        "agency_ghl_id": None,
        "ghl_user_type": "location",
        "ghl_user_id": "user-1",
        "business_name": "Smith Auto",
        "business_description": "Used car dealership",
        "business_context": None,
        "target_audience": None,
        "services_offered": "Sales, financing",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "token_expires_at": datetime.now(timezone.utc) + timedelta(hours=12),
        "is_active": True,
    }
    values.update(overrides)
    return LocationConfig(**values)


def make_field(target_key: str, kind: str = "standard", **overrides) -> ExtractionField:
    values = {
        "id": uuid.uuid4(),
        "config_id": uuid.uuid4(),
        "field_name": target_key.split(".")[-1],
        "description": f"The customer's {target_key.split('.')[-1]}",
        "target_ghl_key": target_key,
        "field_kind": kind,
        "field_key": None,
        "field_type": "TEXT",
        "picklist_options": [],
        "is_required": False,
        "overwrite_policy": "always",
        "sort_order": 0,
        "original_ghl_field_data": None,
    }
    values.update(overrides)
    return ExtractionField(**values)


def make_catalog(*fields):
    return build_catalog(list(fields))


@pytest.fixture
def contact_catalog():
    """firstName, phone and email, all overwrite_policy=always."""
    return make_catalog(
        make_field("contact.firstName", sort_order=1),
        make_field("contact.phone", field_type="PHONE", sort_order=2),
        make_field("contact.email", field_type="EMAIL", sort_order=3),
    )
