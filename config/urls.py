"""
URL configuration for the portal access-control service.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Access control endpoints
    path('v1/rbac/', include('apps.rbac.urls')),  # Checks, rule matrices, overrides, dynamic roles, menu

    # Company endpoints
    path('v1/companies/', include('apps.companies.urls')),  # Feature flags
]
