"""Tests for the error envelope returned by every failing endpoint.

{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "...", "details": ...},
    "request_id": "<uuid>"
}
"""

import json

import pytest
from pydantic import ValidationError

from gatehouse.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from gatehouse.api.schemas import Envelope, ErrorBody


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="admin authentication required")
        assert error.details is None

    def test_details_accept_dict_and_list(self):
        assert ErrorBody(code="validation_error", message="x", details={"f": 1}).details == {"f": 1}
        assert len(ErrorBody(code="validation_error", message="x", details=[{}, {}]).details) == 2

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="short and stout")

    def test_missing_message_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")


class TestEnvelope:
    def test_status_pattern(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_request_id_generated(self):
        first = Envelope(status="ok")
        second = Envelope(status="ok")
        assert first.request_id != second.request_id


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (429, "rate_limited"),
            (500, "server_error"),
            (503, "service_unavailable"),
        ],
    )
    def test_known_statuses(self, status, code):
        assert _STATUS_TO_CODE[status] == code
        assert _error_code_for_status(status) == code

    def test_unknown_status_falls_back(self):
        assert _error_code_for_status(418) == "server_error"


def test_error_response_shape():
    response = _error_response(401, "admin authentication required")
    assert response.status_code == 401
    body = json.loads(response.body)
    assert body["status"] == "error"
    assert body["data"] is None
    assert body["error"] == {
        "code": "unauthorized",
        "message": "admin authentication required",
        "details": None,
    }
    assert body["request_id"]


def test_error_response_explicit_code_and_details():
    response = _error_response(
        503, "service temporarily unavailable", {"retry": True}, code="service_unavailable"
    )
    body = json.loads(response.body)
    assert body["error"]["code"] == "service_unavailable"
    assert body["error"]["details"] == {"retry": True}
