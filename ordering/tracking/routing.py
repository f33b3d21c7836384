from django.urls import path

from .consumers import OrderTrackingConsumer, TabConsumer

websocket_urlpatterns = [
    path('ws/orders/<int:order_id>/', OrderTrackingConsumer.as_asgi()),
    path('ws/tabs/<int:venue_id>/', TabConsumer.as_asgi()),
]
