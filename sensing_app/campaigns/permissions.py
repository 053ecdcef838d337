from __future__ import annotations

from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied

from .models import Campaign, CampaignMembership

User = get_user_model()
Role = CampaignMembership.Role


class DatabaseRoleDirectory:
    """Answers admin and per-campaign role questions from the user tables."""

    def is_admin(self, username: str) -> bool:
        return User.objects.filter(username=username, is_superuser=True, is_active=True).exists()

    def get_roles(self, username: str, campaign_urn: str) -> set[Role]:
        roles = CampaignMembership.objects.filter(
            user__username=username, campaign__urn=campaign_urn
        ).values_list("role", flat=True)
        return {Role(role) for role in roles}


def campaign_roles(user, campaign: Campaign) -> set[Role]:
    if not user.is_authenticated:
        return set()
    return {
        Role(role)
        for role in CampaignMembership.objects.filter(user=user, campaign=campaign).values_list(
            "role", flat=True
        )
    }


def can_read_responses(user, campaign: Campaign) -> bool:
    # Any member may query; row visibility is narrowed by the access resolver
    if not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return bool(campaign_roles(user, campaign))


def can_upload_responses(user, campaign: Campaign) -> bool:
    if not user.is_authenticated:
        return False
    return Role.PARTICIPANT in campaign_roles(user, campaign)


def can_modify_response(user, campaign: Campaign, owner_username: str) -> bool:
    """Owner, campaign supervisor, or a system administrator."""
    if not user.is_authenticated:
        return False
    if user.is_superuser or user.get_username() == owner_username:
        return True
    return Role.SUPERVISOR in campaign_roles(user, campaign)


def require_can_read(user, campaign: Campaign) -> None:
    if not can_read_responses(user, campaign):
        raise PermissionDenied("You do not have permission to read responses in this campaign.")


def require_can_upload(user, campaign: Campaign) -> None:
    if not can_upload_responses(user, campaign):
        raise PermissionDenied("You do not have permission to upload to this campaign.")


def require_can_modify(user, campaign: Campaign, owner_username: str) -> None:
    if not can_modify_response(user, campaign, owner_username):
        raise PermissionDenied("You do not have permission to modify this survey response.")
