"""Row visibility for survey-response reads.

Administrators and campaign supervisors see every response. Everyone else sees
their own responses, plus shared responses when they are an author, or shared
responses of a shared campaign when they are an analyst.
"""

from __future__ import annotations

from typing import Protocol

from sensing_app.campaigns.models import CampaignMembership

from .domain import PrivacyState
from .sql import SqlFragment

Role = CampaignMembership.Role


class RoleDirectory(Protocol):
    def is_admin(self, username: str) -> bool: ...

    def get_roles(self, username: str, campaign_urn: str) -> set[Role]: ...


def visibility_predicate(requester: str, is_admin: bool, roles: set[Role]) -> SqlFragment | None:
    """Return the WHERE fragment restricting rows, or None for full visibility."""
    if is_admin or Role.SUPERVISOR in roles:
        return None

    shared = PrivacyState.SHARED.value
    predicate = SqlFragment("u.username = %s", (requester,))
    if Role.AUTHOR in roles:
        predicate = predicate + SqlFragment(" OR sr.privacy_state = %s", (shared,))
    elif Role.ANALYST in roles:
        predicate = predicate + SqlFragment(
            " OR (sr.privacy_state = %s AND c.privacy_state = %s)", (shared, shared)
        )
    return predicate.wrap("(", ")")


class AccessControlResolver:
    """Resolves visibility predicates, memoised per (user, campaign).

    Create one per request; the memo never outlives it.
    """

    def __init__(self, directory: RoleDirectory):
        self.directory = directory
        self._memo: dict[tuple[str, str], SqlFragment | None] = {}

    def resolve(self, requester: str, campaign_urn: str) -> SqlFragment | None:
        key = (requester, campaign_urn)
        if key not in self._memo:
            if self.directory.is_admin(requester):
                self._memo[key] = None
            else:
                roles = self.directory.get_roles(requester, campaign_urn)
                self._memo[key] = visibility_predicate(requester, False, roles)
        return self._memo[key]
