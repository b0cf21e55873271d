from __future__ import annotations

import time
from typing import Any

import pytest
import requests

from signalbot.data.kraken_client import (
    KrakenAPIError,
    KrakenAuthError,
    KrakenFuturesClient,
    NonceGenerator,
    RetryableKrakenAPIError,
    TokenBucketLimiter,
    _parse_retry_after,
    sign_request,
)

SECRET = "c2VjcmV0LWtleS1ieXRlcw=="


class FakeResponse:
    def __init__(
        self,
        status_code: int,
        payload: Any = None,
        headers: dict[str, str] | None = None,
        text: str | None = None,
    ):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else ("" if payload is None else "json")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    def __init__(self, responses: list[Any]):
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.requests.append(kwargs)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(responses: list[Any], monkeypatch: pytest.MonkeyPatch) -> tuple[KrakenFuturesClient, list[float]]:
    sleeps: list[float] = []
    monkeypatch.setattr("signalbot.data.kraken_client.time.sleep", sleeps.append)
    client = KrakenFuturesClient(
        "public-key",
        SECRET,
        base_url="https://futures.example.test/",
        rate_limit_rps=100.0,
        rate_limit_burst=20,
        request_max_attempts=3,
    )
    client.session = FakeSession(responses)
    return client, sleeps


def test_sign_request_matches_known_vector() -> None:
    signature = sign_request(
        SECRET,
        "/derivatives/api/v3/sendorder",
        "170000000000000000",
        "orderType=lmt&symbol=PF_XBTUSD&side=buy&size=0.001",
    )
    assert signature == (
        "XXC+8xFrlq8eQ3QV4GluWLwD101BVThvFNmBLoAVClaylUK4WQ2eZEQazOwVyGjyOUb++U1bKptAJ8XbLepz9w=="
    )


def test_sign_request_strips_derivatives_prefix() -> None:
    full = sign_request(SECRET, "/derivatives/api/v3/openpositions", "1")
    stripped = sign_request(SECRET, "/api/v3/openpositions", "1")
    assert full == stripped


def test_nonce_is_timestamp_plus_counter_and_increasing() -> None:
    generator = NonceGenerator()
    first = generator.next()
    second = generator.next()

    assert first.isdigit() and len(first) == 18
    assert first.endswith("00000")
    assert second.endswith("00001")
    assert int(second) > int(first)


def test_token_bucket_limiter_applies_wait() -> None:
    limiter = TokenBucketLimiter(rate_per_second=5.0, burst=1)
    limiter.acquire()
    start = time.perf_counter()
    limiter.acquire()
    elapsed = time.perf_counter() - start
    assert elapsed >= 0.15


def test_parse_retry_after() -> None:
    assert _parse_retry_after({"Retry-After": "3"}) == 3.0
    assert _parse_retry_after({"Retry-After": "not-a-number"}) is None
    assert _parse_retry_after({}) is None


def test_send_order_posts_signed_form_body(monkeypatch: pytest.MonkeyPatch) -> None:
    ok = FakeResponse(200, {"result": "success", "sendStatus": {"status": "placed", "order_id": "abc"}})
    client, _ = _client([ok], monkeypatch)

    response = client.send_order({"orderType": "lmt", "symbol": "PF_XBTUSD", "side": "buy", "size": 0.001})

    assert response["sendStatus"]["order_id"] == "abc"
    sent = client.session.requests[0]
    assert sent["method"] == "POST"
    assert sent["url"] == "https://futures.example.test/derivatives/api/v3/sendorder"
    assert sent["data"] == "orderType=lmt&symbol=PF_XBTUSD&side=buy&size=0.001"
    headers = sent["headers"]
    assert headers["APIKey"] == "public-key"
    assert headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert headers["Authent"] == sign_request(
        SECRET, "/derivatives/api/v3/sendorder", headers["Nonce"], sent["data"]
    )


def test_public_endpoints_are_unsigned(monkeypatch: pytest.MonkeyPatch) -> None:
    tickers = FakeResponse(200, {"result": "success", "tickers": [{"symbol": "PF_XBTUSD", "last": 1.0}]})
    client, _ = _client([tickers], monkeypatch)

    assert client.get_tickers() == [{"symbol": "PF_XBTUSD", "last": 1.0}]
    assert "Authent" not in client.session.requests[0]["headers"]
    assert client.session.requests[0]["data"] is None


def test_get_retries_server_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    client, sleeps = _client(
        [FakeResponse(503), FakeResponse(200, {"result": "success", "openPositions": []})],
        monkeypatch,
    )

    assert client.get_open_positions() == []
    assert len(client.session.requests) == 2
    assert len(sleeps) == 1
    assert client.metrics_snapshot()["total_retries"] == 1


def test_get_retries_network_errors_until_exhausted(monkeypatch: pytest.MonkeyPatch) -> None:
    failures = [requests.ConnectionError("down") for _ in range(3)]
    client, sleeps = _client(failures, monkeypatch)

    with pytest.raises(RetryableKrakenAPIError):
        client.get_open_positions()
    assert len(client.session.requests) == 3
    assert len(sleeps) == 2


def test_post_is_not_retried_on_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client, sleeps = _client([FakeResponse(502)], monkeypatch)

    with pytest.raises(RetryableKrakenAPIError):
        client.send_order({"orderType": "mkt", "symbol": "PF_XBTUSD", "side": "sell", "size": 1})
    assert len(client.session.requests) == 1
    assert sleeps == []


def test_post_is_not_retried_on_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client([requests.Timeout("slow")], monkeypatch)

    with pytest.raises(RetryableKrakenAPIError):
        client.cancel_all_orders("PF_XBTUSD")
    assert len(client.session.requests) == 1


def test_rate_limited_post_honours_retry_after(monkeypatch: pytest.MonkeyPatch) -> None:
    client, sleeps = _client(
        [
            FakeResponse(429, headers={"Retry-After": "2"}),
            FakeResponse(200, {"result": "success", "cancelStatus": {"status": "cancelled"}}),
        ],
        monkeypatch,
    )

    client.cancel_all_orders("PF_XBTUSD")
    assert sleeps == [2.0]
    assert client.session.requests[1]["data"] == "symbol=PF_XBTUSD"
    assert client.metrics_snapshot()["http_429_count"] == 1


def test_error_result_in_body_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client([FakeResponse(200, {"result": "error", "error": "marketSuspended"})], monkeypatch)

    with pytest.raises(KrakenAPIError) as excinfo:
        client.get_open_positions()
    assert not isinstance(excinfo.value, KrakenAuthError)
    assert excinfo.value.body == {"result": "error", "error": "marketSuspended"}


def test_auth_failures_raise_auth_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client(
        [FakeResponse(200, {"result": "error", "error": "nonceBelowThreshold"}), FakeResponse(401, {"error": "x"})],
        monkeypatch,
    )

    with pytest.raises(KrakenAuthError):
        client.get_open_positions()
    with pytest.raises(KrakenAuthError):
        client.get_open_positions()


def test_client_errors_are_not_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    client, sleeps = _client([FakeResponse(400, {"error": "bad request"})], monkeypatch)

    with pytest.raises(KrakenAPIError, match="HTTP 400"):
        client.get_instruments()
    assert sleeps == []


def test_non_json_success_body_is_an_api_error(monkeypatch: pytest.MonkeyPatch) -> None:
    page = FakeResponse(200, headers={"Content-Type": "text/html"}, text="<html>502 Bad Gateway</html>")
    client, sleeps = _client([page], monkeypatch)

    with pytest.raises(KrakenAPIError, match="Invalid JSON") as excinfo:
        client.send_order({"orderType": "stp", "symbol": "PF_XBTUSD", "side": "sell", "size": 0.001})
    assert excinfo.value.body == "<html>502 Bad Gateway</html>"
    assert len(client.session.requests) == 1
    assert sleeps == []
