"""HTTP confirmation client with retries, circuit breaker, and context headers.

This module implements the ``ConfirmationGateway`` port over ``httpx``
against the confirmation service. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- A circuit breaker so an unhealthy confirmation authority is not hammered,
    with HALF_OPEN probing after a timeout.
- A retry policy with capped exponential backoff for transport errors and
    5xx responses.
- Idempotency: every call carries ``Idempotency-Key: order-<order_id>`` so
    a retried request can never produce a second confirmation number.

Every failure is surfaced to the domain as ``ConfirmationFailed``.
"""

import logging
import threading
import time
from decimal import Decimal
from enum import Enum
from typing import Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .errors import ConfirmationFailed

logger = logging.getLogger(__name__)

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")


# ---------------- Circuit Breaker ---------------- #

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised by ``before_call`` when the protected call must not be made."""


class CircuitBreaker:
    """Circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe, back to OPEN on failure.
      Only one probe may be in flight at a time.

    All transitions happen under an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state, applying the time-based OPEN → HALF_OPEN move."""
        with self._lock:
            if self._state is CircuitState.OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> CircuitState:
        """Admit or refuse a protected call.

        Returns:
            CircuitState: The state the call was admitted in.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is
                already running.
        """
        with self._lock:
            st = self.state
            if st is CircuitState.OPEN:
                raise CircuitOpenError(f"circuit '{self.name}' is open")
            if st is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(f"circuit '{self.name}' probe in flight")
                self._probe_in_flight = True
            return st

    def on_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._probe_in_flight = False

    def on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN or (
                self._failures >= self.fail_threshold and self._state is not CircuitState.OPEN
            ):
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._probe_in_flight = False


_confirmation_cb = CircuitBreaker(
    "confirmation",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build outgoing headers: ``X-Request-ID`` when known, then ``extra``.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return (max_attempts, backoff_base_seconds, max_sleep_seconds)."""
    return (
        max(1, int(getattr(settings, "HTTP_RETRY_MAX", 3))),
        float(getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15)),
        float(getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def idempotency_key_for(order_id) -> str:
    return f"order-{order_id}"


# ---------------- Confirmation Adapter ---------------- #

class HttpConfirmationClient:
    """HTTP client for the confirmation service (``POST /confirm``)."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or settings.CONFIRMATION_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.CONFIRMATION_TIMEOUT_SECS
        self.breaker = breaker or _confirmation_cb

    def confirm(self, order_id, total_price: Decimal) -> str:
        """Request a confirmation number for an order.

        Business mappings:
        - 200 with a non-empty ``confirmation_number`` → that number
        - 4xx → refused; not counted as a circuit failure
        - 5xx / transport error → retried, then counted as a circuit failure

        Args:
            order_id: Durable order identifier, also used for the
                ``Idempotency-Key`` header.
            total_price: VAT-inclusive order total, sent as a decimal string.

        Returns:
            str: The confirmation number.

        Raises:
            ConfirmationFailed: On refusal, timeout, exhausted retries, a
                malformed response or an open circuit.
        """
        payload = {"order_id": str(order_id), "total_price": str(total_price)}
        max_attempts, backoff, max_sleep = _retry_policy()

        try:
            self.breaker.before_call()
        except CircuitOpenError as exc:
            raise ConfirmationFailed(order_id, str(exc)) from exc

        headers = _request_headers({"Idempotency-Key": idempotency_key_for(order_id)})
        tries = 0
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/confirm", json=payload, headers=headers)
                    except httpx.RequestError as e:
                        exc = e

                    if resp is not None and resp.status_code == 200:
                        return self._parse_confirmation(order_id, resp)
                    if resp is not None and not _should_retry(resp, None):
                        self.breaker.on_success()
                        raise ConfirmationFailed(order_id, f"confirmation refused with HTTP {resp.status_code}")

                    tries += 1
                    if tries >= max_attempts:
                        self.breaker.on_failure()
                        reason = f"{type(exc).__name__}: {exc}" if exc else f"HTTP {resp.status_code}"
                        raise ConfirmationFailed(order_id, f"confirmation unavailable after {tries} attempts ({reason})")

                    logger.info(
                        "retrying confirmation",
                        extra={"order_id": str(order_id), "attempt": tries},
                    )
                    time.sleep(min(backoff * (2 ** (tries - 1)), max_sleep))
        finally:
            self.breaker.on_finish()

    def _parse_confirmation(self, order_id, resp: httpx.Response) -> str:
        try:
            number = resp.json().get("confirmation_number")
        except ValueError:
            number = None
        if not isinstance(number, str) or not number.strip():
            self.breaker.on_failure()
            raise ConfirmationFailed(order_id, "confirmation response without confirmation_number")
        self.breaker.on_success()
        return number.strip()
