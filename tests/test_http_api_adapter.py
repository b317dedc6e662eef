from __future__ import annotations

import json

import httpx
import pytest

from formsync.core.errors import TransportFailure
from formsync.outbox.adapters.http_api import HttpApiAdapter


def _adapter(handler) -> HttpApiAdapter:
    return HttpApiAdapter(base_url="http://remote.test", timeout_s=1.0, transport=httpx.MockTransport(handler))


def test_2xx_is_sent_with_exact_body_and_identity_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["user"] = request.headers.get("X-User-Id")
        seen["if_match"] = request.headers.get("If-Match")
        return httpx.Response(200, json={"success": True})

    res = _adapter(handler).send(
        method="POST",
        url="/api/save-school-resources",
        body={"res_armchairs_good": 10},
        owner_id="u1",
        version_token='W/"7"',
    )

    assert res.ok is True
    assert res.retryable is False
    assert res.status_code == 200
    assert res.raw_response == {"success": True}
    assert seen == {
        "method": "POST",
        "url": "http://remote.test/api/save-school-resources",
        "body": {"res_armchairs_good": 10},
        "user": "u1",
        "if_match": 'W/"7"',
    }


def test_empty_2xx_body_is_still_success():
    res = _adapter(lambda r: httpx.Response(204)).send(method="PUT", url="/x", body={}, owner_id="u1")
    assert res.ok is True
    assert res.raw_response is None


@pytest.mark.parametrize("status", [400, 401, 409, 500, 503])
def test_any_response_outside_2xx_is_an_application_failure(status):
    res = _adapter(lambda r: httpx.Response(status, text="nope")).send(method="POST", url="/x", body={}, owner_id="u1")

    assert res.ok is False
    assert res.retryable is False
    assert res.status == "REJECTED"
    assert res.status_code == status
    assert res.reason == f"http_{status}:nope"


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
        httpx.ConnectTimeout("timed out"),
    ],
)
def test_no_response_is_a_transport_failure(exc):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc

    res = _adapter(handler).send(method="POST", url="/x", body={}, owner_id="u1")

    assert res.ok is False
    assert res.retryable is True
    assert res.status == "TRANSPORT_FAILED"
    assert res.status_code is None
    assert res.reason.startswith("transport:")


def test_fetch_returns_record_data():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/school-resources/u1"
        return httpx.Response(200, json={"exists": True, "data": {"school_id": "S1", "res_armchairs_good": 3}})

    assert _adapter(handler).fetch(url="/api/school-resources/u1", owner_id="u1") == {
        "school_id": "S1",
        "res_armchairs_good": 3,
    }


def test_fetch_missing_record_is_none():
    assert _adapter(lambda r: httpx.Response(200, json={"exists": False})).fetch(url="/x/u1", owner_id="u1") is None


def test_fetch_offline_raises_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns failure")

    with pytest.raises(TransportFailure):
        _adapter(handler).fetch(url="/x/u1", owner_id="u1")


def test_ping():
    assert _adapter(lambda r: httpx.Response(404)).ping() is True

    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down")

    assert _adapter(down).ping() is False
