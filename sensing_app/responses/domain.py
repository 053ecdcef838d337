"""In-memory survey responses as read from, or written to, the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sensing_app.campaigns.definitions import NoResponse, PromptDefinition, SurveyDefinition

from .models import SurveyResponse

PrivacyState = SurveyResponse.PrivacyState


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: float | None = None
    provider: str | None = None
    time: int | None = None
    timezone: str | None = None

    @classmethod
    def from_json(cls, data: dict) -> Location:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=None if data.get("accuracy") is None else float(data["accuracy"]),
            provider=data.get("provider"),
            time=None if data.get("time") is None else int(data["time"]),
            timezone=data.get("timezone"),
        )

    def to_json(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "provider": self.provider,
            "time": self.time,
            "timezone": self.timezone,
        }


@dataclass
class PromptAnswer:
    prompt: PromptDefinition
    value: Any
    repeatable_set_iteration: int | None = None

    @property
    def key(self) -> tuple[str, int | None]:
        return (self.prompt.id, self.repeatable_set_iteration)

    @property
    def is_no_response(self) -> bool:
        return isinstance(self.value, NoResponse)

    @property
    def media_id(self) -> str | None:
        if self.prompt.type.is_media and not self.is_no_response:
            return self.value
        return None

    def to_json(self) -> dict:
        return {
            "prompt_id": self.prompt.id,
            "prompt_type": self.prompt.type.value,
            "value": self.value.value if self.is_no_response else self.value,
            "repeatable_set_id": self.prompt.repeatable_set_id,
            "repeatable_set_iteration": self.repeatable_set_iteration,
        }


@dataclass
class SurveyResponseRecord:
    """One user's submission of one survey.

    ``answers`` is keyed by ``(prompt_id, repeatable_set_iteration)`` and keeps
    insertion order. Aggregated reads fill ``count`` and ``aggregate_values``
    and leave ``answers`` empty.
    """

    uuid: str
    username: str
    campaign_urn: str
    client: str
    epoch_millis: int
    timezone: str
    survey: SurveyDefinition
    location_status: str
    location: Location | None = None
    launch_context: dict = field(default_factory=dict)
    privacy_state: PrivacyState = PrivacyState.PRIVATE
    answers: dict[tuple[str, int | None], PromptAnswer] = field(default_factory=dict)
    count: int | None = None
    aggregate_values: dict[str, Any] = field(default_factory=dict)

    def add_answer(self, answer: PromptAnswer) -> None:
        self.answers[answer.key] = answer

    @property
    def media_ids(self) -> set[str]:
        return {a.media_id for a in self.answers.values() if a.media_id is not None}

    def to_json(self) -> dict:
        result = {
            "survey_key": self.uuid,
            "user": self.username,
            "campaign_urn": self.campaign_urn,
            "client": self.client,
            "time": self.epoch_millis,
            "timezone": self.timezone,
            "survey_id": self.survey.id,
            "survey_title": self.survey.title,
            "survey_launch_context": self.launch_context,
            "location_status": self.location_status,
            "location": self.location.to_json() if self.location else None,
            "privacy_state": self.privacy_state.value,
            "responses": [answer.to_json() for answer in self.answers.values()],
        }
        if self.count is not None:
            result["count"] = self.count
            result["aggregate"] = self.aggregate_values
        return result
