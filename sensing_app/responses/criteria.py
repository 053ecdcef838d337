"""Filter criteria for survey-response reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sensing_app.campaigns.definitions import PromptType
from sensing_app.core.exceptions import ValidationFailure

from .domain import PrivacyState


class ColumnKey(str, Enum):
    """Columns a caller may aggregate on."""

    CONTEXT_CLIENT = "context:client"
    CONTEXT_DATE = "context:date"
    CONTEXT_TIMESTAMP = "context:timestamp"
    CONTEXT_UTC_TIMESTAMP = "context:utc_timestamp"
    CONTEXT_EPOCH_MILLIS = "context:epoch_millis"
    CONTEXT_TIMEZONE = "context:timezone"
    CONTEXT_LAUNCH_CONTEXT_LONG = "context:launch_context_long"
    CONTEXT_LAUNCH_CONTEXT_SHORT = "context:launch_context_short"
    CONTEXT_LOCATION_STATUS = "context:location:status"
    CONTEXT_LOCATION_LATITUDE = "context:location:latitude"
    CONTEXT_LOCATION_LONGITUDE = "context:location:longitude"
    CONTEXT_LOCATION_TIMESTAMP = "context:location:timestamp"
    CONTEXT_LOCATION_TIMEZONE = "context:location:timezone"
    CONTEXT_LOCATION_ACCURACY = "context:location:accuracy"
    CONTEXT_LOCATION_PROVIDER = "context:location:provider"
    USER_ID = "user:id"
    SURVEY_ID = "survey:id"
    SURVEY_TITLE = "survey:title"
    SURVEY_DESCRIPTION = "survey:description"
    SURVEY_RESPONSE_ID = "survey:response_id"
    SURVEY_PRIVACY_STATE = "survey:privacy_state"
    REPEATABLE_SET_ID = "repeatable_set:id"
    REPEATABLE_SET_ITERATION = "repeatable_set:iteration"
    PROMPT_RESPONSE = "prompt:response"


class SortParameter(str, Enum):
    USER = "user"
    TIMESTAMP = "timestamp"
    SURVEY = "survey"


@dataclass(frozen=True)
class SurveyResponseCriteria:
    """Immutable read request.

    ``None`` means "no restriction" for every optional collection. An empty
    collection for survey IDs, prompt IDs, survey-response IDs or aggregation
    columns matches nothing and the read never reaches the database.
    """

    campaign_urn: str
    requester: str
    survey_response_ids: frozenset[str] | None = None
    usernames: frozenset[str] | None = None
    start_date: int | None = None
    end_date: int | None = None
    privacy_state: PrivacyState | None = None
    survey_ids: frozenset[str] | None = None
    prompt_ids: frozenset[str] | None = None
    prompt_type: PromptType | None = None
    search_tokens: tuple[str, ...] | None = None
    columns: tuple[ColumnKey, ...] | None = None
    sort_order: tuple[SortParameter, ...] | None = None
    skip: int = 0
    limit: int | None = None

    def __post_init__(self):
        if not self.campaign_urn:
            raise ValidationFailure("A campaign is required.")
        if not self.requester:
            raise ValidationFailure("A requesting user is required.")
        if self.skip < 0:
            raise ValidationFailure("The number to skip may not be negative.")
        if self.limit is not None and self.limit < 0:
            raise ValidationFailure("The number to return may not be negative.")
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.start_date > self.end_date
        ):
            raise ValidationFailure("The start date must not be after the end date.")

    def is_short_circuited(self) -> bool:
        return any(
            collection is not None and len(collection) == 0
            for collection in (
                self.survey_ids,
                self.prompt_ids,
                self.columns,
                self.survey_response_ids,
            )
        )


def to_epoch_millis(value: datetime | int | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    if value.tzinfo is None:
        raise ValidationFailure("Dates must carry a timezone.")
    return int(value.timestamp() * 1000)
