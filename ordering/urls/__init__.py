# URL packages - customer, kitchen and waiter APIs.
from django.urls import path, include

urlpatterns = [
    path('customer/', include('ordering.urls.customer_urls')),
    path('kitchen/', include('ordering.urls.kitchen_urls')),
    path('waiter/', include('ordering.urls.waiter_urls')),
]
