"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain DTOs, delegate to ``OrderService`` or
``LifecycleService`` and render the result. Services are obtained through
``providers`` at call time so tests can swap them with ``monkeypatch``.

Rejections raised by the core are ``OrderError`` subclasses; they are
rendered as ``{"detail": CODE, "message": ..., <subject>}`` with the HTTP
status from ``STATUS_BY_CODE`` (400 when the code is not listed).

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint stores its final response. Retries with the same payload replay
it with ``Idempotent-Replay: true``; a different payload under the same key
returns 409 ``IDEMPOTENCY_CONFLICT``.
"""

import json
import logging
import traceback

from django.conf import settings
from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import lifecycle, providers
from .domain import AccessDenied, OrderError
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent, release
from .models import OrderModel
from .repository import to_order
from .schemas import (
    AssignPartnerDTO,
    CreateOrderDTO,
    LookupDTO,
    OrderReadDTO,
    RepeatDTO,
    RepeatLineDTO,
    StatusUpdateDTO,
    ValidateDeliveryDTO,
)

logger = logging.getLogger("orders")

STATUS_BY_CODE = {
    "STORE_PAUSED": status.HTTP_503_SERVICE_UNAVAILABLE,
    "STORE_CLOSED": status.HTTP_503_SERVICE_UNAVAILABLE,
    "CUTOFF_PASSED": status.HTTP_503_SERVICE_UNAVAILABLE,
    "NOTIFICATIONS_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "ADDRESS_FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "ADDRESS_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PARTNER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_PROOF_MISSING": status.HTTP_402_PAYMENT_REQUIRED,
    "PAYMENT_SIGNATURE_MISMATCH": status.HTTP_402_PAYMENT_REQUIRED,
    "OUT_OF_STOCK": status.HTTP_409_CONFLICT,
    "STATUS_CONFLICT": status.HTTP_409_CONFLICT,
    "IDEMPOTENCY_CONFLICT": status.HTTP_409_CONFLICT,
    "IDEMPOTENCY_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "ORDER_TERMINAL": status.HTTP_409_CONFLICT,
}


def error_response(exc: OrderError) -> Response:
    return Response(exc.as_dict(), status=STATUS_BY_CODE.get(str(exc), status.HTTP_400_BAD_REQUEST))


def validation_response(exc: ValidationError) -> Response:
    errors = json.loads(exc.json(include_url=False))
    return Response({"detail": "VALIDATION_ERROR", "errors": errors}, status=status.HTTP_400_BAD_REQUEST)


def render_order(order) -> dict:
    return OrderReadDTO.from_order(order).model_dump(mode="json")


def customer_id_of(request):
    user = request.user
    return str(user.pk) if user and user.is_authenticated else None


def order_page(request, qs) -> Response:
    """Render one page of ``qs`` newest first.

    Query parameters: ``status`` (a status, an alias such as ``READY`` or a
    board group such as ``ACTIVE``), ``page`` and ``page_size`` (1..100).
    """
    qs = qs.prefetch_related("lines").order_by("-created_at", "-number")
    wanted = request.GET.get("status")
    if wanted:
        group = lifecycle.STATUS_GROUPS.get(wanted.strip().upper())
        parsed = lifecycle.parse_status(wanted)
        statuses = group or ((parsed,) if parsed else None)
        if statuses is None:
            return Response({"detail": "INVALID_STATUS", "message": f"Unknown status {wanted}"}, status=400)
        qs = qs.filter(status__in=[s.value for s in statuses])

    try:
        page = int(request.GET.get("page", 1))
        page_size = min(max(int(request.GET.get("page_size", 20)), 1), 100)
    except ValueError:
        return Response({"detail": "INVALID_PAGINATION"}, status=400)
    p = Paginator(qs, page_size)
    page_obj = p.get_page(page)

    return Response(
        {
            "count": p.count,
            "page": page_obj.number,
            "page_size": page_size,
            "results": [render_order(to_order(o)) for o in page_obj.object_list],
        },
        status=200,
    )


class OrdersAPIView(APIView):
    """Base view rendering domain rejections and unexpected failures as JSON."""

    throttle_classes = [ScopedRateThrottle]

    def handle_exception(self, exc):
        if isinstance(exc, OrderError):
            return error_response(exc)
        if isinstance(exc, ValidationError):
            return validation_response(exc)
        if isinstance(exc, APIException):
            return super().handle_exception(exc)

        logger.exception("unhandled error", extra={"path": self.request.path})
        body = {"detail": "INTERNAL_ERROR"}
        if settings.DEBUG:
            body["traceback"] = traceback.format_exc()
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class OrdersPingView(APIView):
    """Simple liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(OrdersAPIView):
    """List orders (staff, see ``order_page``) and submit new orders."""

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return super().get_throttles()

    def get_permissions(self):
        if self.request.method == "GET":
            return [IsAdminUser()]
        return super().get_permissions()

    def get(self, request):
        return order_page(request, OrderModel.objects.all())

    def post(self, request):
        """Submit an order.

        Returns:
            Response: 201 with the committed order; 200 with the stored body on
            an idempotent replay; the rejection's status and body otherwise.
        """
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except IdempotencyConflict as e:
                return error_response(e)
            if existing:
                resp = Response(rec.response_body, status=rec.response_status or status.HTTP_200_OK)
                resp["Idempotent-Replay"] = "true"
                return resp

        service = providers.get_order_service()
        try:
            order = service.place_order(dto.to_domain(customer_id=customer_id_of(request)))
        except OrderError as e:
            resp = error_response(e)
            if rec:
                finalize(rec, resp.status_code, resp.data)
            logger.info("order rejected", extra={"code": str(e)})
            return resp
        except Exception:
            if rec:
                release(rec)
            raise

        body = render_order(order)
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class MyOrdersView(OrdersAPIView):
    """Order history of the signed-in customer, paginated like the staff list."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "orders_detail"

    def get(self, request):
        return order_page(request, OrderModel.objects.filter(customer_id=customer_id_of(request)))


class RetrieveOrderView(OrdersAPIView):
    """An order, visible to its owner and to staff."""

    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = providers.get_lifecycle_service().get(str(oid))
        if not request.user.is_staff and (not order.customer_id or order.customer_id != customer_id_of(request)):
            raise AccessDenied("You cannot view this order.")
        return Response(render_order(order), status=200)


class ValidateDeliveryView(OrdersAPIView):
    throttle_scope = "orders_detail"

    def post(self, request):
        dto = ValidateDeliveryDTO.model_validate(request.data)
        zone = providers.get_order_service().validate_delivery(dto.to_intent(customer_id_of(request)))
        return Response({"serviceable": True, "pincode": zone.pincode, "zone": zone.name})


class LookupOrderView(OrdersAPIView):
    """Guest order tracking by order id or number, confirmed by phone."""

    throttle_scope = "orders_lookup"

    def post(self, request):
        dto = LookupDTO.model_validate(request.data)
        order = providers.get_lifecycle_service().lookup(dto.reference, dto.phone.strip())
        return Response(render_order(order))


class RepeatOrderView(OrdersAPIView):
    throttle_scope = "orders_detail"

    def post(self, request):
        dto = RepeatDTO.model_validate(request.data)
        result = providers.get_order_service().repeat_order(
            dto.order_id, customer_id=customer_id_of(request), phone=dto.phone
        )
        return Response(
            {
                "items": [RepeatLineDTO.from_priced(line).model_dump(mode="json") for line in result.lines],
                "warnings": result.warnings,
            }
        )


class OrderStatusView(OrdersAPIView):
    permission_classes = [IsAdminUser]
    throttle_scope = "orders_manage"

    def put(self, request, oid):
        dto = StatusUpdateDTO.model_validate(request.data)
        order = providers.get_lifecycle_service().update_status(str(oid), dto.status)
        return Response(render_order(order))


class AssignPartnerView(OrdersAPIView):
    permission_classes = [IsAdminUser]
    throttle_scope = "orders_manage"

    def put(self, request, oid):
        dto = AssignPartnerDTO.model_validate(request.data)
        order = providers.get_lifecycle_service().assign_partner(str(oid), dto.partner_id)
        return Response(render_order(order))


class ActivateOrderView(OrdersAPIView):
    """Manual override releasing a scheduled order to the kitchen early."""

    permission_classes = [IsAdminUser]
    throttle_scope = "orders_manage"

    def post(self, request, oid):
        order = providers.get_lifecycle_service().activate(str(oid))
        return Response(render_order(order))


class InvoiceView(OrdersAPIView):
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        service = providers.get_lifecycle_service()
        order = service.get(str(oid))
        if not request.user.is_staff and (not order.customer_id or order.customer_id != customer_id_of(request)):
            raise AccessDenied("You cannot view this invoice.")
        order = service.ensure_invoice_number(order.id)
        body = render_order(order)
        return Response(
            {
                "invoice_number": order.invoice_number,
                "order_number": order.number,
                "date": body["created_at"],
                "customer_name": order.customer_name,
                "lines": body["lines"],
                "subtotal": body["subtotal"],
                "discount": body["discount"],
                "tax": body["tax"],
                "total": body["total"],
                "payment_method": body["payment_method"],
                "payment_status": body["payment_status"],
            }
        )


class KitchenBoardView(OrdersAPIView):
    permission_classes = [IsAdminUser]
    throttle_scope = "orders_manage"

    def get(self, request):
        board = providers.get_lifecycle_service().kitchen_board()
        return Response({group: [render_order(o) for o in orders] for group, orders in board.items()})


class OrderNotificationsView(OrdersAPIView):
    """Notifications sent for an order, as recorded by the notifications service."""

    permission_classes = [IsAdminUser]
    throttle_scope = "orders_manage"

    def get(self, request, oid):
        order = providers.get_lifecycle_service().get(str(oid))
        events = providers.get_notification_log().for_order(order.id)
        return Response({"order_id": order.id, "notifications": events})
