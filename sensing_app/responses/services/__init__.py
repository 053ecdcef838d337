"""
Survey-response services.

The service graph is built once when the app registry is ready (see
``ResponsesConfig.ready``); callers fetch it with ``get_survey_response_service``.
"""

from django.apps import apps

from .survey_response_service import SurveyResponseService, UploadResult

__all__ = ["SurveyResponseService", "UploadResult", "get_survey_response_service"]


def get_survey_response_service() -> SurveyResponseService:
    return apps.get_app_config("responses").survey_response_service
