"""
Company API URLs.
"""
from django.urls import path
from apps.companies.views import FeatureFlagListView, FeatureFlagDetailView

app_name = 'companies'

urlpatterns = [
    path('<uuid:company_id>/features', FeatureFlagListView.as_view(), name='feature-list'),
    path('<uuid:company_id>/features/<str:feature_key>', FeatureFlagDetailView.as_view(), name='feature-detail'),
]
