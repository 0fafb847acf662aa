import json
from urllib.parse import parse_qs

import httpx
import pytest

from extractor.services.ghl_client import GHLAPIError, GHLClient


def client_with(handler):
    return GHLClient("https://crm.test", transport=httpx.MockTransport(handler))


class TestContacts:
    def test_get_contact_sends_version_and_bearer(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"contact": {"id": "c1", "firstName": "Jane"}})

        contact = client_with(handler).get_contact("tok", "c1")

        assert contact == {"id": "c1", "firstName": "Jane"}
        assert seen["url"] == "https://crm.test/contacts/c1"
        assert seen["headers"]["Authorization"] == "Bearer tok"
        assert seen["headers"]["Version"] == "2021-07-28"

    def test_get_contact_404_is_none(self):
        assert client_with(lambda request: httpx.Response(404, json={})).get_contact("tok", "c1") is None

    def test_update_contact_puts_payload(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"succeded": True})

        response = client_with(handler).update_contact("tok", "c1", {"firstName": "John"})

        assert seen == {"method": "PUT", "body": {"firstName": "John"}}
        assert response == {"succeded": True}

    def test_non_2xx_raises_with_body(self):
        client = client_with(lambda request: httpx.Response(422, text="bad email"))

        with pytest.raises(GHLAPIError) as exc_info:
            client.update_contact("tok", "c1", {"email": "x"})

        assert exc_info.value.status_code == 422
        assert exc_info.value.body == "bad email"


class TestOAuth:
    def test_refresh_token_is_form_encoded(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["Content-Type"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "new", "refresh_token": "r2", "expires_in": 86399})

        data = client_with(handler).refresh_token("id", "secret", "r1")

        assert data["access_token"] == "new"
        assert seen["url"] == "https://crm.test/oauth/token"
        assert seen["content_type"] == "application/x-www-form-urlencoded"
        assert seen["form"] == {
            "client_id": ["id"],
            "client_secret": ["secret"],
            "grant_type": ["refresh_token"],
            "refresh_token": ["r1"],
        }


class TestWallet:
    def test_check_funds_passes_company_id(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            return httpx.Response(200, json={"hasFunds": False})

        assert client_with(handler).check_funds("tok", "company-1") is False
        assert seen["url"].path == "/marketplace/billing/charges/has-funds"
        assert seen["url"].params["companyId"] == "company-1"

    def test_create_charge_returns_charge_id(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"chargeId": "ch-1"})

        charge_id = client_with(handler).create_charge("tok", {"meterId": "m1", "units": 1})

        assert charge_id == "ch-1"
        assert seen["body"] == {"meterId": "m1", "units": 1}

    def test_maintenance_page_on_has_funds_raises_api_error(self):
        client = client_with(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(GHLAPIError) as exc_info:
            client.check_funds("tok", "company-1")

        assert exc_info.value.status_code == 200
        assert exc_info.value.operation == "check_funds"

    def test_non_json_charge_response_raises_api_error(self):
        client = client_with(lambda request: httpx.Response(201, text="created"))

        with pytest.raises(GHLAPIError):
            client.create_charge("tok", {"meterId": "m1", "units": 1})


class TestMalformedContactBody:
    def test_non_json_contact_raises_api_error(self):
        client = client_with(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(GHLAPIError):
            client.get_contact("tok", "c1")

    def test_empty_update_response_is_empty_dict(self):
        assert client_with(lambda request: httpx.Response(200)).update_contact("tok", "c1", {"firstName": "J"}) == {}
