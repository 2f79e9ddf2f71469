import pytest

from apps.orders.models import CatalogItem, IdempotencyKey, OrderModel

CREATE_URL = "/api/orders/"

pytestmark = pytest.mark.django_db


def post(client, payload, key):
    return client.post(CREATE_URL, data=payload, content_type="application/json", HTTP_IDEMPOTENCY_KEY=key)


def test_idempotent_retry_returns_same_order_without_second_commit(client, catalog, zone, order_payload):
    payload = order_payload()

    r1 = post(client, payload, "idem-same-1")
    assert r1.status_code == 201

    r2 = post(client, payload, "idem-same-1")
    assert r2.status_code == 201
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"

    assert OrderModel.objects.count() == 1
    assert CatalogItem.objects.get(pk="pizza-margherita").stock == 8
    assert str(IdempotencyKey.objects.get(key="idem-same-1").order_id) == r1.json()["id"]


def test_idempotent_conflict_on_different_payload_with_same_key(client, catalog, zone, order_payload):
    r1 = post(client, order_payload(), "idem-conflict-1")
    assert r1.status_code == 201

    r2 = post(client, order_payload(items=[{"item_id": "coke", "quantity": 3}]), "idem-conflict-1")
    assert r2.status_code == 409
    assert r2.json()["detail"] == "IDEMPOTENCY_CONFLICT"


def test_idempotent_replay_preserves_rejection(client, catalog, zone, order_payload):
    payload = order_payload(items=[{"item_id": "pizza-margherita", "quantity": 999}])

    r1 = post(client, payload, "idem-400")
    assert r1.status_code == 400
    assert r1.json()["detail"] == "INSUFFICIENT_STOCK"

    # Stock arriving later does not change the stored answer for this key
    CatalogItem.objects.filter(pk="pizza-margherita").update(stock=5000)
    r2 = post(client, payload, "idem-400")
    assert r2.status_code == 400
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"


def test_crashed_attempt_releases_the_key(client, catalog, zone, order_payload, monkeypatch):
    payload = order_payload()

    def boom(self, draft):
        raise RuntimeError("connection reset")

    with monkeypatch.context() as m:
        m.setattr("apps.orders.repository.DjangoOrderStore.commit", boom)
        assert post(client, payload, "idem-crash").status_code == 500

    assert not IdempotencyKey.objects.filter(key="idem-crash").exists()
    assert post(client, payload, "idem-crash").status_code == 201
