from __future__ import annotations

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import models

from sensing_app.campaigns.definitions import MediaCategory
from sensing_app.campaigns.models import Campaign

User = get_user_model()


class SurveyResponse(models.Model):
    class PrivacyState(models.TextChoices):
        PRIVATE = "private", "Private"
        SHARED = "shared", "Shared"

    class LocationStatus(models.TextChoices):
        VALID = "valid", "Valid"
        INACCURATE = "inaccurate", "Inaccurate"
        STALE = "stale", "Stale"
        UNAVAILABLE = "unavailable", "Unavailable"

    uuid = models.CharField(max_length=36, unique=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="survey_responses")
    campaign = models.ForeignKey(
        Campaign, on_delete=models.CASCADE, related_name="survey_responses"
    )
    client = models.CharField(max_length=255)
    epoch_millis = models.BigIntegerField()
    phone_timezone = models.CharField(max_length=64)
    survey_id = models.CharField(max_length=255)
    # JSON documents kept as text so raw queries read them back uniformly.
    launch_context = models.TextField(default="{}")
    location_status = models.CharField(max_length=20, choices=LocationStatus.choices)
    location = models.TextField(null=True, blank=True)
    privacy_state = models.CharField(
        max_length=20, choices=PrivacyState.choices, default=PrivacyState.PRIVATE
    )
    upload_timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "survey_response"
        indexes = [
            models.Index(fields=["campaign", "epoch_millis"], name="survey_resp_campaig_3c1f0e_idx"),
            models.Index(fields=["survey_id"], name="survey_resp_survey__8a2d41_idx"),
        ]

    def __str__(self) -> str:
        return self.uuid


class PromptResponse(models.Model):
    survey_response = models.ForeignKey(
        SurveyResponse, on_delete=models.CASCADE, related_name="prompt_responses"
    )
    prompt_id = models.CharField(max_length=255)
    prompt_type = models.CharField(max_length=32)
    repeatable_set_id = models.CharField(max_length=255, null=True, blank=True)
    repeatable_set_iteration = models.PositiveIntegerField(null=True, blank=True)
    response = models.TextField()

    class Meta:
        db_table = "prompt_response"
        constraints = [
            models.UniqueConstraint(
                fields=["survey_response", "prompt_id", "repeatable_set_iteration"],
                name="unique_prompt_response_per_iteration",
            ),
        ]


def media_upload_path(instance: Media, filename: str) -> str:
    directory = settings.SURVEY_MEDIA_DIRECTORIES.get(instance.category, instance.category)
    return f"{directory}/{instance.uuid}"


class Media(models.Model):
    uuid = models.CharField(max_length=36, unique=True)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="media")
    # Nulled when the response row goes first; swept by sweep_orphaned_media.
    survey_response = models.ForeignKey(
        SurveyResponse,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="media",
    )
    category = models.CharField(max_length=20, choices=MediaCategory.choices)
    content_type = models.CharField(max_length=255)
    filename = models.CharField(max_length=255, blank=True)
    data = models.FileField(upload_to=media_upload_path, max_length=255)
    size = models.PositiveBigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "media"

    def __str__(self) -> str:
        return f"{self.category}:{self.uuid}"


class AuditLog(models.Model):
    class Action(models.TextChoices):
        UPLOAD = "upload", "Upload"
        UPDATE = "update", "Update"
        DELETE = "delete", "Delete"
        PRIVACY_UPDATE = "privacy_update", "Privacy update"

    actor = models.ForeignKey(User, on_delete=models.CASCADE, related_name="response_audit_logs")
    campaign = models.ForeignKey(Campaign, null=True, blank=True, on_delete=models.CASCADE)
    action = models.CharField(max_length=20, choices=Action.choices)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["campaign", "action"], name="responses_a_campaig_5e7b2c_idx"),
            models.Index(fields=["created_at"], name="responses_a_created_9d4f10_idx"),
        ]
