"""Tests for api/base.py - Unified API response format."""

from datetime import timezone

from api.base import (
    success_response,
    error_response,
    ErrorCodes,
)


class TestSuccessResponse:
    """Tests for success_response()."""

    def test_structure(self):
        resp = success_response({"foo": "bar"})
        assert resp.success is True
        assert resp.data == {"foo": "bar"}
        assert resp.error is None

    def test_request_id_generated(self):
        resp = success_response({})
        assert resp.meta.request_id is not None
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = success_response({})
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestErrorResponse:
    """Tests for error_response()."""

    def test_structure(self):
        resp = error_response("TEST_ERROR", "Something went wrong")
        assert resp.success is False
        assert resp.data is None
        assert resp.error.code == "TEST_ERROR"
        assert resp.error.message == "Something went wrong"

    def test_request_id_generated(self):
        resp = error_response("ERR", "msg")
        assert resp.meta.request_id is not None
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = error_response("ERR", "msg")
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestRequestIdPassthrough:
    def test_explicit_request_id_used(self):
        assert success_response({}, request_id="abc-123").meta.request_id == "abc-123"
        assert error_response("ERR", "msg", request_id="abc-123").meta.request_id == "abc-123"


class TestErrorCodes:
    """Codes are coarse; none reveals why a credential was rejected."""

    def test_auth_codes(self):
        assert ErrorCodes.NOT_AUTHENTICATED == "NOT_AUTHENTICATED"
        assert ErrorCodes.SESSION_EXPIRED == "SESSION_EXPIRED"
        assert ErrorCodes.INVALID_TOKEN == "INVALID_TOKEN"
        assert ErrorCodes.CSRF_FAILED == "CSRF_FAILED"

    def test_has_invalid_request(self):
        assert ErrorCodes.INVALID_REQUEST == "INVALID_REQUEST"

    def test_infrastructure_codes(self):
        assert ErrorCodes.INTERNAL_ERROR == "INTERNAL_ERROR"
        assert ErrorCodes.SERVICE_UNAVAILABLE == "SERVICE_UNAVAILABLE"
