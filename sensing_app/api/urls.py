from django.urls import path
from rest_framework.permissions import AllowAny
from rest_framework.schemas import get_schema_view
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)

from . import omh, views

urlpatterns = [
    path("health", views.healthcheck, name="healthcheck"),
    path("token", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("token/refresh", TokenRefreshView.as_view(), name="token_refresh"),
    path("responses/privacy-states", views.privacy_states, name="privacy-states"),
    path(
        "campaigns/<str:campaign_urn>/responses",
        views.SurveyResponseListView.as_view(),
        name="survey-response-list",
    ),
    path(
        "campaigns/<str:campaign_urn>/responses/upload",
        views.SurveyResponseUploadView.as_view(),
        name="survey-response-upload",
    ),
    path(
        "campaigns/<str:campaign_urn>/responses/<str:survey_response_id>",
        views.SurveyResponseDetailView.as_view(),
        name="survey-response-detail",
    ),
    path(
        "campaigns/<str:campaign_urn>/responses/<str:survey_response_id>/privacy",
        views.SurveyResponsePrivacyView.as_view(),
        name="survey-response-privacy",
    ),
    path("omh/v1", omh.schema_list, name="omh-schema-list"),
    path("omh/v1/<str:schema_id>", omh.schema_versions, name="omh-schema-versions"),
    path(
        "omh/v1/<str:schema_id>/<int:version>",
        omh.schema_definition,
        name="omh-schema-definition",
    ),
    path(
        "omh/v1/<str:schema_id>/<int:version>/data",
        omh.schema_data,
        name="omh-schema-data",
    ),
    # OpenAPI schema (JSON)
    path(
        "schema",
        get_schema_view(
            title="Sensing API",
            description="OpenAPI schema for the survey response API",
            version="1.0.0",
            permission_classes=[AllowAny],
        ),
        name="openapi-schema",
    ),
]
