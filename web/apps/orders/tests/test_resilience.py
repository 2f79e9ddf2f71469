import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.domain import NotificationEvent
from apps.orders.http_adapters import CircuitBreaker, HttpNotificationDispatcher

PAYLOAD = {"order_id": "o-1"}


@pytest.fixture(autouse=True)
def reset_breaker(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    http_adapters._notifications_cb.on_success()
    yield
    http_adapters._notifications_cb.on_success()


def test_notifications_retry_on_5xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1

        class R:
            status_code = 500 if calls["n"] == 1 else 202

        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    ok = HttpNotificationDispatcher(base_url="http://x").deliver(NotificationEvent.ORDER_PLACED, PAYLOAD)
    assert ok is True
    assert calls["n"] == 2


def test_exhausted_retries_open_the_circuit(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 0
    monkeypatch.setattr(http_adapters._notifications_cb, "fail_threshold", 2)
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1

        class R:
            status_code = 503

        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    client = HttpNotificationDispatcher(base_url="http://x")

    assert client.deliver(NotificationEvent.ORDER_PLACED, PAYLOAD) is False
    assert client.deliver(NotificationEvent.ORDER_PLACED, PAYLOAD) is False
    assert http_adapters._notifications_cb.state == "OPEN"

    # Open circuit: skipped without calling the service
    assert client.deliver(NotificationEvent.ORDER_PLACED, PAYLOAD) is False
    assert calls["n"] == 2


def test_breaker_half_open_allows_a_single_trial_call(monkeypatch):
    clock = {"now": 100.0}
    monkeypatch.setattr(http_adapters.time, "monotonic", lambda: clock["now"])
    cb = CircuitBreaker("test", fail_threshold=1, reset_timeout=10)

    cb.on_failure()
    assert cb.state == "OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_OPEN"):
        cb.before_call()

    clock["now"] += 10
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_HALF_OPEN_BUSY"):
        cb.before_call()

    cb.on_failure()
    assert cb.state == "OPEN"

    clock["now"] += 10
    cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"
