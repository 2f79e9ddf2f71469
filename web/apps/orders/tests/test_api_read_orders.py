from uuid import uuid4

import pytest

DETAIL_URL = "/api/orders/{oid}/"
LIST_URL = "/api/orders/"

pytestmark = pytest.mark.django_db


def test_staff_get_order_by_id_returns_200_and_payload(admin_client, place):
    created = place()
    r = admin_client.get(DETAIL_URL.format(oid=created["id"]))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == created["id"]
    assert body["status"] == "PENDING"
    assert body["status_label"] == "Pending"
    assert body["total"] == created["total"]
    assert body["lines"][0]["quantity"] == 2


def test_owner_can_read_own_order(client, place, django_user_model):
    user = django_user_model.objects.create_user(username="asha", password="pw")
    client.force_login(user)
    created = place()
    assert client.get(DETAIL_URL.format(oid=created["id"])).status_code == 200

    other = django_user_model.objects.create_user(username="ravi", password="pw")
    client.force_login(other)
    r = client.get(DETAIL_URL.format(oid=created["id"]))
    assert r.status_code == 403
    assert r.json()["detail"] == "FORBIDDEN"


def test_guest_order_is_not_readable_anonymously(client, place):
    created = place()
    assert client.get(DETAIL_URL.format(oid=created["id"])).status_code == 403


def test_get_order_not_found_returns_404(admin_client):
    r = admin_client.get(DETAIL_URL.format(oid=str(uuid4())))
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_list_orders_returns_paginated_array(admin_client, place):
    place()
    place()
    r = admin_client.get(LIST_URL, {"page_size": 1})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert body["page_size"] == 1
    assert len(body["results"]) == 1
    assert {"id", "number", "status", "total", "invoice_number"} <= set(body["results"][0])


def test_list_orders_filters_by_status_group(admin_client, place):
    first = place()
    place()
    admin_client.put(
        f"/api/orders/{first['id']}/status/", data={"status": "cancelled"}, content_type="application/json"
    )

    completed = admin_client.get(LIST_URL, {"status": "COMPLETED"}).json()
    assert [o["id"] for o in completed["results"]] == [first["id"]]
    assert admin_client.get(LIST_URL, {"status": "pending"}).json()["count"] == 1
    assert admin_client.get(LIST_URL, {"status": "bogus"}).status_code == 400


def test_list_orders_is_staff_only(client):
    assert client.get(LIST_URL).status_code == 403


def test_my_orders_lists_only_own_orders(client, place, django_user_model):
    asha = django_user_model.objects.create_user(username="asha", password="pw")
    ravi = django_user_model.objects.create_user(username="ravi", password="pw")
    client.force_login(asha)
    first = place()
    second = place()
    client.force_login(ravi)
    place()

    client.force_login(asha)
    body = client.get("/api/orders/my/").json()
    assert body["count"] == 2
    assert [o["id"] for o in body["results"]] == [second["id"], first["id"]]

    page = client.get("/api/orders/my/", {"page_size": 1, "page": 2}).json()
    assert [o["id"] for o in page["results"]] == [first["id"]]


def test_my_orders_requires_sign_in(client):
    assert client.get("/api/orders/my/").status_code == 403
