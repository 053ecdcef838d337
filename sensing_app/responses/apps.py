from django.apps import AppConfig


class ResponsesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "sensing_app.responses"
    label = "responses"
    verbose_name = "Survey responses"

    def ready(self):
        # Composition root: one instance of each collaborator per process.
        from sensing_app.campaigns.permissions import DatabaseRoleDirectory

        from .media import MediaStore
        from .queries import SurveyResponseQueries
        from .services.survey_response_service import SurveyResponseService

        self.survey_response_service = SurveyResponseService(
            queries=SurveyResponseQueries(DatabaseRoleDirectory()),
            media_store=MediaStore(),
        )
