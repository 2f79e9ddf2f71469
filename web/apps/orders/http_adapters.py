"""HTTP adapters for the notifications service.

This module implements the ``NotificationDispatcher`` and ``NotificationLog``
ports on top of ``httpx``. The dispatcher adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    the gateway middleware. The id is captured when the event is raised, not
    when the background worker sends it.
- Circuit breaker for the notifications service to avoid hammering it while
    it is unhealthy, with HALF_OPEN probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Fire-and-forget delivery: events are posted from a small thread pool and
    every failure is logged, never raised to the caller.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import List, Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import NotificationDispatcher, NotificationEvent, NotificationLog, NotificationsUnavailable

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger("orders.notifications")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Guards calls to the notifications service.

    After ``fail_threshold`` calls in a row fail, the breaker opens and
    further event deliveries (or notification-log reads) are refused with
    ``CIRCUIT_OPEN`` without touching the network. Once ``reset_timeout``
    seconds have passed a single trial call is let through: success
    closes the breaker, failure reopens it.

    Shared by the background delivery threads and request threads.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._trial_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check the breaker before a protected call.

        Raises:
            RuntimeError: ``CIRCUIT_OPEN`` or ``CIRCUIT_HALF_OPEN_BUSY``.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._trial_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._trial_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._trial_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._trial_in_flight = False


_notifications_cb = CircuitBreaker(
    "notifications",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)

_notification_log_cb = CircuitBreaker(
    "notification-log",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)

# Shared by every dispatcher instance; notifications are low volume.
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")


# ---------------- Helpers ---------------- #

def _request_headers(request_id: Optional[str], extra: Optional[dict] = None) -> dict:
    headers: dict[str, str] = {}
    if request_id and request_id != "-":
        headers["X-Request-ID"] = request_id
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds, max_sleep)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _log_crash(event: NotificationEvent, order_id, future) -> None:
    """Done-callback reporting an exception that escaped ``deliver``."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(
            "notification delivery crashed",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"event": event.value, "order_id": order_id},
        )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


# ---------------- Notifications Adapter ---------------- #

class HttpNotificationDispatcher(NotificationDispatcher):
    """Posts lifecycle events to the notifications service.

    ``notify`` returns immediately; ``deliver`` does the actual work and is
    what the background worker runs.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None, executor=None):
        self.base_url = base_url or settings.NOTIFICATIONS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.executor = executor or _executor

    def notify(self, event: NotificationEvent, payload: dict) -> None:
        request_id = REQUEST_ID_CTX.get()
        try:
            future = self.executor.submit(self.deliver, event, payload, request_id)
        except RuntimeError:
            # Executor already shut down (interpreter exit)
            logger.warning("notification dropped", extra={"event": event.value, "order_id": payload.get("order_id")})
            return
        future.add_done_callback(partial(_log_crash, event, payload.get("order_id")))

    def deliver(self, event: NotificationEvent, payload: dict, request_id: Optional[str] = None) -> bool:
        """Post one event with retries. Returns True when the service accepted it.

        Exhausted retries, an open circuit and non-retriable responses are
        logged and reported as False. Anything else propagates to the future,
        where ``notify`` logs it.
        """
        body = {"event": event.value, "payload": payload}
        max_retries, backoff, cap = _retry_policy()
        tries = 0

        try:
            state = _notifications_cb.before_call()
        except RuntimeError as e:
            logger.warning(
                "notification skipped",
                extra={"event": event.value, "order_id": payload.get("order_id"), "reason": str(e)},
            )
            return False

        headers = _request_headers(
            request_id,
            {
                "Idempotency-Key": f"{payload.get('order_id')}:{event.value}",
                "X-Circuit-State": state,
                "X-Retry-Count": "0",
            },
        )
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/events", json=body, headers=headers)
                        if 200 <= resp.status_code < 300:
                            _notifications_cb.on_success()
                            return True
                        if not _should_retry(resp, None):
                            # 4xx: the service rejected the event, not a circuit failure
                            _notifications_cb.on_success()
                            logger.warning(
                                "notification rejected",
                                extra={"event": event.value, "status_code": resp.status_code},
                            )
                            return False
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries:
                        _notifications_cb.on_failure()
                        logger.error(
                            "notification failed",
                            extra={
                                "event": event.value,
                                "order_id": payload.get("order_id"),
                                "attempts": tries,
                                "error": str(exc) if exc else f"HTTP {resp.status_code}",
                            },
                        )
                        return False

                    time.sleep(min(backoff * (2 ** (tries - 1)), cap))
        finally:
            _notifications_cb.on_finish()


class HttpNotificationLog(NotificationLog):
    """Reads an order's notification log from the notifications service.

    A staff request is waiting on the answer, so there is no retry loop: a
    failed read is reported straight away as ``NOTIFICATIONS_UNAVAILABLE``
    and counted against its own breaker.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.NOTIFICATIONS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def for_order(self, order_id: str) -> List[dict]:
        try:
            state = _notification_log_cb.before_call()
        except RuntimeError as e:
            raise NotificationsUnavailable("Notification history is temporarily unavailable.") from e

        headers = _request_headers(REQUEST_ID_CTX.get(), {"X-Circuit-State": state})
        try:
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.get(f"{self.base_url}/events", params={"order_id": order_id}, headers=headers)
            except httpx.RequestError as e:
                _notification_log_cb.on_failure()
                logger.warning("notification log unreachable", extra={"order_id": order_id, "error": str(e)})
                raise NotificationsUnavailable("Notification history is temporarily unavailable.") from e

            if resp.status_code >= 500:
                _notification_log_cb.on_failure()
                logger.warning(
                    "notification log failed", extra={"order_id": order_id, "status_code": resp.status_code}
                )
                raise NotificationsUnavailable("Notification history is temporarily unavailable.")
            _notification_log_cb.on_success()
            if resp.status_code != 200:
                raise NotificationsUnavailable(f"Notifications service answered HTTP {resp.status_code}.")
            return resp.json()
        finally:
            _notification_log_cb.on_finish()
