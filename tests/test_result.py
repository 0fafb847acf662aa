from extractor.services.result import ErrorKind, Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("test value")
        assert result.ok is True
        assert result.value == "test value"
        assert result.error is None

    def test_success_maps_to_200(self):
        assert Result.success({"key": "value"}).http_status() == 200


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Something went wrong", "test_error")
        assert result.ok is False
        assert result.error == "Something went wrong"
        assert result.error_code == "test_error"
        assert result.value is None

    def test_failure_default_code(self):
        result = Result.failure("Error message")
        assert result.error_code == "unknown"

    def test_failure_accepts_error_kind(self):
        result = Result.failure("No funds", ErrorKind.PAYMENT_REQUIRED)
        assert result.error_code == "payment_required"


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        result = Result.success("actual value")
        assert result.unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        result = Result.failure("Error", "code")
        assert result.unwrap_or("default") == "default"

    def test_unwrap_or_with_none_value(self):
        result = Result.success(None)
        assert result.unwrap_or("default") is None


class TestHttpMapping:
    def test_validation_is_400(self):
        assert Result.failure("missing", ErrorKind.VALIDATION).http_status() == 400

    def test_config_missing_is_404(self):
        assert Result.failure("no config", ErrorKind.CONFIG_MISSING).http_status() == 404

    def test_unauthorized_is_401(self):
        assert Result.failure("refresh failed", ErrorKind.UNAUTHORIZED).http_status() == 401

    def test_payment_required_is_402(self):
        assert Result.failure("no funds", ErrorKind.PAYMENT_REQUIRED).http_status() == 402

    def test_upstream_and_parse_are_502(self):
        assert Result.failure("crm", ErrorKind.UPSTREAM).http_status() == 502
        assert Result.failure("json", ErrorKind.PARSE).http_status() == 502

    def test_timeout_is_504(self):
        assert Result.failure("slow", ErrorKind.TIMEOUT).http_status() == 504

    def test_unknown_code_is_500(self):
        assert Result.failure("boom", "something_else").http_status() == 500


class TestErrorBody:
    def test_error_body_preserves_upstream_status(self):
        result = Result.failure("CRM rejected update", ErrorKind.UPSTREAM, detail={"body": "bad"}, status_code=422)
        body = result.to_error_body()
        assert body == {
            "success": False,
            "error": "CRM rejected update",
            "error_code": "upstream",
            "upstream_status": 422,
            "detail": {"body": "bad"},
        }

    def test_error_body_omits_empty_extras(self):
        body = Result.failure("missing", ErrorKind.VALIDATION).to_error_body()
        assert "upstream_status" not in body
        assert "detail" not in body
