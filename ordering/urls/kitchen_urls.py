"""Kitchen API URL configuration. Order board plus order and item status updates."""
from django.urls import path

from ordering.permissions import staff_required
from ordering.utils import auth_required
from ordering.views.kitchen.order_views import (
    kitchen_item_status,
    kitchen_order_cancel,
    kitchen_order_status,
    kitchen_orders,
)


def _kitchen_view(view_func):
    return auth_required(staff_required(view_func))


urlpatterns = [
    path('orders/', _kitchen_view(kitchen_orders)),
    path('orders/<int:pk>/status/', _kitchen_view(kitchen_order_status)),
    path('orders/<int:pk>/items/<str:item_key>/status/', _kitchen_view(kitchen_item_status)),
    path('orders/<int:pk>/cancel/', _kitchen_view(kitchen_order_cancel)),
]
