"""
URL configuration for railway_backend project.
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView, SpectacularRedocView


def api_root(request):
    """Root API endpoint showing available endpoints."""
    return JsonResponse({
        'message': 'Welcome to the Railway Reservation API',
        'version': '1.0',
        'documentation': {
            'swagger_ui': '/api/docs/',
            'redoc': '/api/docs/redoc/',
            'openapi_schema': '/api/schema/',
        },
        'endpoints': {
            'book': '/api/v1/tickets/book/',
            'cancel': '/api/v1/tickets/cancel/<pnr>/',
            'booked': '/api/v1/tickets/booked/',
            'available': '/api/v1/tickets/available/',
            'ticket': '/api/v1/tickets/<pnr>/',
            'health': '/health/',
        }
    })


def health(request):
    """Liveness probe."""
    return JsonResponse({'status': 'ok'})


urlpatterns = [
    path('', api_root, name='api_root'),
    path('health/', health, name='health'),
    path('admin/', admin.site.urls),

    # API Documentation (Swagger UI)
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/docs/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),

    # API Endpoints
    path('api/v1/tickets/', include('tickets.urls')),
]
