"""Waiter API URL configuration. All views wrapped with auth + staff_required."""
from django.urls import path

from ordering.permissions import staff_required
from ordering.utils import auth_required
from ordering.views.waiter.bill_views import (
    waiter_open_bill_detail,
    waiter_open_bill_request,
    waiter_open_bill_settle,
    waiter_open_bills,
    waiter_order_bill,
)
from ordering.views.waiter.call_views import waiter_call_list, waiter_call_update


def _waiter_view(view_func):
    return auth_required(staff_required(view_func))


urlpatterns = [
    path('venues/<int:venue_id>/open-bills/', _waiter_view(waiter_open_bills)),
    path('venues/<int:venue_id>/open-bills/<int:customer_id>/', _waiter_view(waiter_open_bill_detail)),
    path('venues/<int:venue_id>/open-bills/<int:customer_id>/request/', _waiter_view(waiter_open_bill_request)),
    path('venues/<int:venue_id>/open-bills/<int:customer_id>/settle/', _waiter_view(waiter_open_bill_settle)),
    path('venues/<int:venue_id>/calls/', _waiter_view(waiter_call_list)),
    path('calls/<int:pk>/', _waiter_view(waiter_call_update)),
    path('orders/<int:pk>/bill/', _waiter_view(waiter_order_bill)),
]
