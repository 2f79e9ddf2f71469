import pytest
from django.db import DatabaseError

from apps.orders.models import StoreSettings


def test_livez_does_not_touch_the_database(client):
    assert client.get("/livez/").json() == {"ok": True}


@pytest.mark.django_db
def test_health_without_store_settings(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}, "store": {"configured": False}}}


@pytest.mark.django_db
def test_health_reports_store_state(client):
    StoreSettings.objects.create(is_open=False, is_paused=True)
    store = client.get("/health/").json()["components"]["store"]
    assert store == {"configured": True, "is_open": False, "is_paused": True}


def test_health_is_503_when_database_is_down(client, monkeypatch):
    class BrokenCursor:
        def __enter__(self):
            raise DatabaseError("connection refused")

        def __exit__(self, *exc):
            return False

    class BrokenConnection:
        def cursor(self):
            return BrokenCursor()

    monkeypatch.setattr("apps.monitoring.api.connection", BrokenConnection())
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["ok"] is False
