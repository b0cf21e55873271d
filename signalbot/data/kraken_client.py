from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import random
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlencode

import requests

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/derivatives/api/v3"
AUTH_ERRORS = {"authenticationError", "nonceBelowThreshold", "nonceDuplicate"}


class KrakenAPIError(RuntimeError):
    """Non-retryable Kraken Futures API error."""

    def __init__(self, message: str, *, endpoint: str | None = None, body: Any = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.body = body


class RetryableKrakenAPIError(KrakenAPIError):
    """Retryable API/network error."""


class KrakenAuthError(KrakenAPIError):
    """Rejected API key, signature or nonce."""


@dataclass(slots=True)
class KrakenClientMetrics:
    total_requests: int = 0
    total_retries: int = 0
    http_429_count: int = 0
    api_errors: int = 0


class TokenBucketLimiter:
    def __init__(self, rate_per_second: float, burst: int):
        self.rate_per_second = max(0.1, float(rate_per_second))
        self.capacity = max(1, int(burst))
        self.tokens = float(self.capacity)
        self.last_refill = time.monotonic()
        self.lock = threading.Lock()

    def acquire(self) -> None:
        while True:
            wait_seconds = 0.0
            with self.lock:
                now = time.monotonic()
                elapsed = max(0.0, now - self.last_refill)
                self.tokens = min(
                    float(self.capacity),
                    self.tokens + elapsed * self.rate_per_second,
                )
                self.last_refill = now
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_seconds = (1.0 - self.tokens) / self.rate_per_second
            time.sleep(wait_seconds)


class NonceGenerator:
    """Millisecond timestamp followed by a 5-digit rolling counter."""

    def __init__(self) -> None:
        self._counter = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            if self._counter > 9999:
                self._counter = 0
            counter = self._counter
            self._counter += 1
        return f"{int(time.time() * 1000)}{counter:05d}"


def sign_request(api_secret: str, endpoint: str, nonce: str, post_data: str = "") -> str:
    path = endpoint[len("/derivatives"):] if endpoint.startswith("/derivatives") else endpoint
    message = (post_data + nonce + path).encode("utf-8")
    digest = hashlib.sha256(message).digest()
    secret = base64.b64decode(api_secret)
    signature = hmac.new(secret, digest, hashlib.sha512).digest()
    return base64.b64encode(signature).decode("ascii")


def _parse_retry_after(headers: Any) -> float | None:
    value = headers.get("Retry-After")
    if not value:
        return None
    try:
        parsed = float(value.strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def _error_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class KrakenFuturesClient:
    """
    Kraken Futures REST API client.

    Auth headers on every private call:
    - APIKey: public key
    - Nonce: strictly increasing string
    - Authent: base64(HMAC-SHA512(b64decode(secret), SHA256(postData + nonce + path)))
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://futures.kraken.com",
        timeout_seconds: int = 10,
        *,
        rate_limit_rps: float = 2.0,
        rate_limit_burst: int = 5,
        request_max_attempts: int = 4,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 10.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.strip().rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.request_max_attempts = max(1, int(request_max_attempts))
        self.backoff_base_seconds = max(0.1, float(backoff_base_seconds))
        self.backoff_max_seconds = max(self.backoff_base_seconds, float(backoff_max_seconds))

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "signalbot-kraken-futures/1.0",
            }
        )
        self._nonce = NonceGenerator()
        self._limiter = TokenBucketLimiter(rate_per_second=rate_limit_rps, burst=rate_limit_burst)
        self._metrics = KrakenClientMetrics()
        self._metrics_lock = threading.Lock()

    def _metric_add(self, field_name: str, value: int = 1) -> None:
        with self._metrics_lock:
            setattr(self._metrics, field_name, getattr(self._metrics, field_name) + value)

    def metrics_snapshot(self) -> dict[str, int]:
        with self._metrics_lock:
            snapshot = KrakenClientMetrics(
                total_requests=self._metrics.total_requests,
                total_retries=self._metrics.total_retries,
                http_429_count=self._metrics.http_429_count,
                api_errors=self._metrics.api_errors,
            )
        return asdict(snapshot)

    def _auth_headers(self, endpoint: str, post_data: str) -> dict[str, str]:
        nonce = self._nonce.next()
        return {
            "APIKey": self.api_key,
            "Nonce": nonce,
            "Authent": sign_request(self.api_secret, endpoint, nonce, post_data),
        }

    def _sleep_retry(self, *, endpoint: str, attempt: int, reason: str, retry_after: float | None = None) -> None:
        if retry_after is not None:
            sleep_seconds = max(0.0, retry_after)
        else:
            exponential = min(
                self.backoff_max_seconds,
                self.backoff_base_seconds * (2 ** max(0, attempt - 1)),
            )
            jitter = random.uniform(0.0, max(0.01, exponential * 0.2))
            sleep_seconds = min(self.backoff_max_seconds, exponential + jitter)
        self._metric_add("total_retries", 1)
        LOGGER.warning(
            "Retrying Kraken API call endpoint=%s attempt=%d/%d sleep=%.2fs reason=%s",
            endpoint,
            attempt,
            self.request_max_attempts,
            sleep_seconds,
            reason,
        )
        time.sleep(sleep_seconds)

    def _send_http(
        self,
        *,
        method: str,
        endpoint: str,
        headers: dict[str, str],
        query: str = "",
        body: str | None = None,
    ) -> requests.Response:
        self._limiter.acquire()
        self._metric_add("total_requests", 1)
        url = f"{self.base_url}{endpoint}"
        if query:
            url = f"{url}?{query}"
        return self.session.request(
            method=method,
            url=url,
            data=body,
            headers=headers,
            timeout=self.timeout_seconds,
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        auth: bool = True,
    ) -> dict[str, Any]:
        # Order POSTs are not idempotent: only a 429 (request refused) is retried.
        idempotent = method == "GET"
        encoded = urlencode(params or {})
        label = f"{method} {endpoint}"

        for attempt in range(1, self.request_max_attempts + 1):
            post_data = encoded if method == "POST" else ""
            headers: dict[str, str] = {}
            if method == "POST":
                headers["Content-Type"] = "application/x-www-form-urlencoded"
            if auth:
                headers.update(self._auth_headers(endpoint, post_data))

            try:
                response = self._send_http(
                    method=method,
                    endpoint=endpoint,
                    headers=headers,
                    query=encoded if method != "POST" else "",
                    body=post_data if method == "POST" else None,
                )
            except requests.RequestException as exc:
                if not idempotent or attempt >= self.request_max_attempts:
                    raise RetryableKrakenAPIError(
                        f"Network error {label}: {exc}",
                        endpoint=label,
                        body=str(exc),
                    ) from exc
                self._sleep_retry(endpoint=label, attempt=attempt, reason=f"network:{type(exc).__name__}")
                continue

            if response.status_code == 429:
                self._metric_add("http_429_count", 1)
                if attempt >= self.request_max_attempts:
                    raise RetryableKrakenAPIError(
                        f"Rate limited {label}: HTTP 429",
                        endpoint=label,
                        body=_error_body(response),
                    )
                self._sleep_retry(
                    endpoint=label,
                    attempt=attempt,
                    reason="http_429",
                    retry_after=_parse_retry_after(response.headers),
                )
                continue

            if response.status_code in (500, 502, 503, 504):
                if not idempotent or attempt >= self.request_max_attempts:
                    raise RetryableKrakenAPIError(
                        f"Retryable API error {label}: HTTP {response.status_code}",
                        endpoint=label,
                        body=_error_body(response),
                    )
                self._sleep_retry(endpoint=label, attempt=attempt, reason=f"http_{response.status_code}")
                continue

            if response.status_code in (401, 403):
                self._metric_add("api_errors", 1)
                raise KrakenAuthError(
                    f"Authorization failed {label}: HTTP {response.status_code}",
                    endpoint=label,
                    body=_error_body(response),
                )

            if response.status_code >= 400:
                self._metric_add("api_errors", 1)
                raise KrakenAPIError(
                    f"API error {label}: HTTP {response.status_code}",
                    endpoint=label,
                    body=_error_body(response),
                )

            if not response.text:
                return {}
            try:
                payload = response.json()
            except ValueError as exc:
                self._metric_add("api_errors", 1)
                raise KrakenAPIError(
                    f"Invalid JSON {label}: HTTP {response.status_code}",
                    endpoint=label,
                    body=response.text,
                ) from exc
            if isinstance(payload, dict) and payload.get("result") == "error":
                self._metric_add("api_errors", 1)
                error = str(payload.get("error") or "unknown")
                error_cls = KrakenAuthError if error in AUTH_ERRORS else KrakenAPIError
                raise error_cls(f"API error {label}: {error}", endpoint=label, body=payload)
            return payload if isinstance(payload, dict) else {"data": payload}

        raise RetryableKrakenAPIError(f"Could not complete request {label}", endpoint=label)

    def get_instruments(self) -> list[dict[str, Any]]:
        payload = self._request("GET", f"{API_PREFIX}/instruments", auth=False)
        instruments = payload.get("instruments", [])
        return instruments if isinstance(instruments, list) else []

    def get_tickers(self) -> list[dict[str, Any]]:
        payload = self._request("GET", f"{API_PREFIX}/tickers", auth=False)
        tickers = payload.get("tickers", [])
        return tickers if isinstance(tickers, list) else []

    def get_open_positions(self) -> list[dict[str, Any]]:
        payload = self._request("GET", f"{API_PREFIX}/openpositions")
        positions = payload.get("openPositions", [])
        return positions if isinstance(positions, list) else []

    def send_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"{API_PREFIX}/sendorder", params=payload)

    def cancel_all_orders(self, symbol: str | None = None) -> dict[str, Any]:
        params = {"symbol": symbol} if symbol else {}
        return self._request("POST", f"{API_PREFIX}/cancelallorders", params=params)
