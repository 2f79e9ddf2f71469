"""Liveness and readiness checks for load balancers and the container runtime."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.models import StoreSettings

logger = logging.getLogger("monitoring")


def live_view(_request):
    return JsonResponse({"ok": True})


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unavailable")

    store = {"configured": False}
    if db_ok:
        row = StoreSettings.objects.order_by("pk").first()
        if row is not None:
            store = {"configured": True, "is_open": row.is_open, "is_paused": row.is_paused}

    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}, "store": store}},
        status=200 if db_ok else 503,
    )
