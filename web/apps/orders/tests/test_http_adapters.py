"""Unit tests for the HTTP confirmation client and its circuit breaker.

These tests verify that the client maps success, refusals, network errors
and malformed responses correctly by monkeypatching ``httpx.Client.post``
and asserting the adapter behavior. Every failure must surface as
``ConfirmationFailed``.
"""
import uuid
from decimal import Decimal

import httpx
import pytest

from apps.orders.errors import ConfirmationFailed
from apps.orders.http_adapters import (
    CircuitBreaker,
    CircuitState,
    HttpConfirmationClient,
    REQUEST_ID_CTX,
)


class DummyResp:
    """Minimal httpx-like response stub for adapter tests."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data
    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 3
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


@pytest.fixture
def breaker():
    return CircuitBreaker("confirmation-test", fail_threshold=2, reset_timeout=60.0)


def make_client(breaker):
    return HttpConfirmationClient(base_url="http://confirmation:8002/", timeout=1.0, breaker=breaker)


def test_confirm_ok_sends_contract_and_headers(monkeypatch, breaker):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(200, {"order_id": json["order_id"], "confirmation_number": "SAP1A2B3C4D"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    oid = uuid.uuid4()
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        number = make_client(breaker).confirm(oid, Decimal("216.50"))
    finally:
        REQUEST_ID_CTX.reset(token)

    assert number == "SAP1A2B3C4D"
    assert seen["url"] == "http://confirmation:8002/confirm"
    assert seen["json"] == {"order_id": str(oid), "total_price": "216.50"}
    assert seen["headers"]["Idempotency-Key"] == f"order-{oid}"
    assert seen["headers"]["X-Request-ID"] == "rid-42"
    assert breaker.state is CircuitState.CLOSED


def test_confirm_retries_on_5xx_then_succeeds(monkeypatch, breaker):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        if calls["n"] == 1:
            return DummyResp(503)
        return DummyResp(200, {"confirmation_number": "SAPDEADBEEF"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    assert make_client(breaker).confirm(uuid.uuid4(), Decimal("10.00")) == "SAPDEADBEEF"
    assert calls["n"] == 2


def test_confirm_network_error_becomes_confirmation_failed(monkeypatch, breaker):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(ConfirmationFailed) as exc:
        make_client(breaker).confirm(uuid.uuid4(), Decimal("10.00"))
    assert calls["n"] == 3
    assert "ConnectError" in exc.value.reason


def test_confirm_timeout_becomes_confirmation_failed(monkeypatch, breaker):
    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(ConfirmationFailed):
        make_client(breaker).confirm(uuid.uuid4(), Decimal("10.00"))


def test_confirm_no_retry_on_4xx(monkeypatch, breaker):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(422, {"detail": "invalid"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(ConfirmationFailed):
        make_client(breaker).confirm(uuid.uuid4(), Decimal("10.00"))
    assert calls["n"] == 1
    # a refusal is a business outcome, not an outage
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.parametrize("body", [{}, {"confirmation_number": ""}, {"confirmation_number": "   "}, None])
def test_confirm_rejects_missing_or_blank_number(monkeypatch, breaker, body):
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(200, body)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(ConfirmationFailed):
        make_client(breaker).confirm(uuid.uuid4(), Decimal("10.00"))


def test_circuit_opens_after_threshold_and_short_circuits(monkeypatch, breaker):
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(500)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    client = make_client(breaker)
    for _ in range(2):
        with pytest.raises(ConfirmationFailed):
            client.confirm(uuid.uuid4(), Decimal("10.00"))
    assert breaker.state is CircuitState.OPEN

    before = calls["n"]
    with pytest.raises(ConfirmationFailed) as exc:
        client.confirm(uuid.uuid4(), Decimal("10.00"))
    assert calls["n"] == before
    assert "open" in exc.value.reason


def test_circuit_half_open_probe_closes_on_success(monkeypatch):
    now = {"t": 1000.0}
    monkeypatch.setattr("apps.orders.http_adapters.time.monotonic", lambda: now["t"])
    cb = CircuitBreaker("probe", fail_threshold=1, reset_timeout=5.0)

    cb.before_call()
    cb.on_failure()
    assert cb.state is CircuitState.OPEN

    now["t"] += 5.0
    assert cb.state is CircuitState.HALF_OPEN
    assert cb.before_call() is CircuitState.HALF_OPEN
    cb.on_success()
    assert cb.state is CircuitState.CLOSED


def test_circuit_half_open_failure_reopens(monkeypatch):
    now = {"t": 0.0}
    monkeypatch.setattr("apps.orders.http_adapters.time.monotonic", lambda: now["t"])
    cb = CircuitBreaker("probe", fail_threshold=3, reset_timeout=1.0)
    for _ in range(3):
        cb.on_failure()
    now["t"] = 2.0
    cb.before_call()
    cb.on_failure()
    assert cb.state is CircuitState.OPEN
