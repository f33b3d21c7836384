"""Customer API URL configuration. Views identify the customer from the X-Customer-Id header."""
from django.urls import path

from ordering.views.customer.order_views import (
    customer_order_bill,
    customer_order_cancel,
    customer_order_detail,
    customer_order_list,
    customer_order_pricing,
)
from ordering.views.customer.tab_views import (
    customer_open_bill,
    customer_open_bill_request,
    customer_open_bill_settle,
    customer_waiter_call,
)

urlpatterns = [
    path('orders/', customer_order_list),
    path('orders/<int:pk>/', customer_order_detail),
    path('orders/<int:pk>/pricing/', customer_order_pricing),
    path('orders/<int:pk>/cancel/', customer_order_cancel),
    path('orders/<int:pk>/bill/', customer_order_bill),
    path('open-bill/', customer_open_bill),
    path('open-bill/request/', customer_open_bill_request),
    path('open-bill/settle/', customer_open_bill_settle),
    path('waiter-calls/', customer_waiter_call),
]
