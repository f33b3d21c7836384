from django.contrib import admin
from django.http import JsonResponse
from django.urls import path, include


def root_view(request):
    """Root URL: simple API info so / is not the admin login."""
    return JsonResponse({
        'name': 'venuetab API',
        'api': '/api/',
        'admin': '/admin/',
        'websockets': ['/ws/orders/<order_id>/', '/ws/tabs/<venue_id>/'],
    })


urlpatterns = [
    path('', root_view),
    path('api/', include('ordering.urls')),
    path('admin/', admin.site.urls),
]
