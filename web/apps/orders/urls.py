from django.urls import path

from .views import (
    ActivateOrderView,
    AssignPartnerView,
    InvoiceView,
    KitchenBoardView,
    LookupOrderView,
    MyOrdersView,
    OrderNotificationsView,
    OrdersCollectionView,
    OrdersPingView,
    OrderStatusView,
    RepeatOrderView,
    RetrieveOrderView,
    ValidateDeliveryView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("my/", MyOrdersView.as_view(), name="my-orders"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("validate-delivery/", ValidateDeliveryView.as_view(), name="validate-delivery"),
    path("lookup/", LookupOrderView.as_view(), name="lookup"),
    path("repeat/", RepeatOrderView.as_view(), name="repeat"),
    path("kitchen/board/", KitchenBoardView.as_view(), name="kitchen-board"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/assign-partner/", AssignPartnerView.as_view(), name="orders-assign-partner"),
    path("<uuid:oid>/activate/", ActivateOrderView.as_view(), name="orders-activate"),
    path("<uuid:oid>/invoice/", InvoiceView.as_view(), name="orders-invoice"),
    path("<uuid:oid>/notifications/", OrderNotificationsView.as_view(), name="orders-notifications"),
]
