"""
CASHRUN Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "CASHRUN Operations"
admin.site.site_title = "CASHRUN Admin"
admin.site.index_title = "Order Supervision"


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'CASHRUN API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'orders': {
                'detail': '/api/orders/<id>/',
                'history': '/api/orders/<id>/history/',
                'claim': '/api/orders/<id>/claim/',
                'advance': '/api/orders/<id>/advance/',
                'handoff_code': '/api/orders/<id>/handoff-code/',
                'reissue_code': '/api/orders/<id>/handoff-code/reissue/',
                'verify': '/api/orders/<id>/verify/',
                'cancel': '/api/orders/<id>/cancel/',
                'rate': '/api/orders/<id>/rate/',
            },
            'websocket': {
                'order_tracking': '/ws/orders/<id>/',
                'runner': '/ws/runner/',
            },
        }
    })


urlpatterns = [
    path('admin/', admin.site.urls),

    # API Root
    path('api/', api_root, name='api-root'),

    # JWT Authentication
    path('api/auth/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    # Orders
    path('api/orders/', include('orders.urls')),

    # API Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
]
