from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()


class Campaign(models.Model):
    class PrivacyState(models.TextChoices):
        PRIVATE = "private", "Private"
        SHARED = "shared", "Shared"

    class RunningState(models.TextChoices):
        RUNNING = "running", "Running"
        STOPPED = "stopped", "Stopped"

    urn = models.CharField(max_length=255, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    privacy_state = models.CharField(
        max_length=20, choices=PrivacyState.choices, default=PrivacyState.PRIVATE
    )
    running_state = models.CharField(
        max_length=20, choices=RunningState.choices, default=RunningState.RUNNING
    )
    # Allows participants to resubmit a response under the same survey key.
    editable_responses = models.BooleanField(default=False)
    # Surveys and prompts, see campaigns.definitions for the shape.
    definition = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "campaign"
        ordering = ["urn"]

    def __str__(self) -> str:
        return self.urn

    @property
    def is_running(self) -> bool:
        return self.running_state == self.RunningState.RUNNING


class CampaignMembership(models.Model):
    class Role(models.TextChoices):
        SUPERVISOR = "supervisor", "Supervisor"
        AUTHOR = "author", "Author"
        ANALYST = "analyst", "Analyst"
        PARTICIPANT = "participant", "Participant"

    campaign = models.ForeignKey(
        Campaign, on_delete=models.CASCADE, related_name="memberships"
    )
    user = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name="campaign_memberships"
    )
    role = models.CharField(max_length=20, choices=Role.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "campaign_membership"
        unique_together = ("campaign", "user", "role")

    def __str__(self) -> str:
        return f"{self.user} @ {self.campaign} ({self.role})"
