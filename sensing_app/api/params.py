"""Turn read-endpoint query parameters into SurveyResponseCriteria."""

from __future__ import annotations

import datetime
from enum import Enum
from typing import TypeVar

from django.conf import settings
from django.utils.dateparse import parse_datetime

from sensing_app.campaigns.definitions import PromptType
from sensing_app.core.exceptions import ValidationFailure
from sensing_app.responses.criteria import (
    ColumnKey,
    SortParameter,
    SurveyResponseCriteria,
    to_epoch_millis,
)
from sensing_app.responses.domain import PrivacyState

E = TypeVar("E", bound=Enum)


def split_list(params, name: str) -> list[str] | None:
    """Comma-separated values; None when absent, [] when present but empty."""
    if name not in params:
        return None
    return [value.strip() for value in params.get(name, "").split(",") if value.strip()]


def set_param(params, name: str) -> frozenset[str] | None:
    values = split_list(params, name)
    return None if values is None else frozenset(values)


def enum_param(enum_cls: type[E], raw: str, name: str) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailure(f"Invalid {name} {raw!r}; expected one of: {allowed}.") from None


def int_param(params, name: str, default: int | None = None, minimum: int = 0) -> int | None:
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailure(f"{name} must be an integer.") from None
    if value < minimum:
        raise ValidationFailure(f"{name} must be at least {minimum}.")
    return value


def date_param(params, name: str) -> int | None:
    """Epoch milliseconds, or an ISO-8601 datetime (UTC when no offset is given)."""
    raw = params.get(name)
    if raw in (None, ""):
        return None
    if raw.lstrip("-").isdigit():
        return int(raw)
    try:
        parsed = parse_datetime(raw)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationFailure(f"{name} must be epoch milliseconds or an ISO-8601 datetime.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return to_epoch_millis(parsed)


def page_limit(requested: int | None) -> int | None:
    """Cap a requested page size by MAX_SURVEY_RESPONSE_PAGE_SIZE (-1 = unlimited)."""
    maximum = settings.MAX_SURVEY_RESPONSE_PAGE_SIZE
    if maximum < 0:
        return requested
    if requested is None:
        return maximum
    return min(requested, maximum)


def build_criteria(params, campaign_urn: str, requester: str) -> SurveyResponseCriteria:
    columns = split_list(params, "columns")
    sort_order = split_list(params, "sort_order")
    search = split_list(params, "search")
    privacy_state = params.get("privacy_state")
    prompt_type = params.get("prompt_type")

    return SurveyResponseCriteria(
        campaign_urn=campaign_urn,
        requester=requester,
        survey_response_ids=set_param(params, "survey_response_ids"),
        usernames=set_param(params, "usernames"),
        start_date=date_param(params, "start_date"),
        end_date=date_param(params, "end_date"),
        privacy_state=enum_param(PrivacyState, privacy_state, "privacy_state") if privacy_state else None,
        survey_ids=set_param(params, "survey_ids"),
        prompt_ids=set_param(params, "prompt_ids"),
        prompt_type=enum_param(PromptType, prompt_type, "prompt_type") if prompt_type else None,
        search_tokens=tuple(search) if search else None,
        columns=None if columns is None else tuple(enum_param(ColumnKey, c, "column") for c in columns),
        sort_order=None if not sort_order else tuple(enum_param(SortParameter, s, "sort_order") for s in sort_order),
        skip=int_param(params, "num_to_skip", default=0),
        limit=page_limit(int_param(params, "num_to_return")),
    )
