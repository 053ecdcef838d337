"""
Campaign definitions: the surveys a campaign runs and the prompts they ask.

A campaign stores its definition as JSON on ``Campaign.definition``::

    {
        "surveys": [
            {
                "id": "mood",
                "version": 1,
                "title": "Mood check",
                "description": "",
                "prompts": [
                    {"id": "feeling", "type": "text"},
                    {"id": "selfie", "type": "photo", "max_file_size": 1048576},
                    {"id": "energy", "type": "single_choice",
                     "choices": {"0": "Low", "1": "High"}},
                    {"repeatable_set_id": "meals",
                     "prompts": [{"id": "food", "type": "text"}]}
                ]
            }
        ]
    }

Prompt types form a closed set. Each type owns one value parser, and media
prompts map onto exactly one media category; both tables below cover every
member of ``PromptType``.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from django.db import models
from django.utils.dateparse import parse_datetime

from sensing_app.core.exceptions import ErrorCode, ValidationFailure


class DefinitionError(ValidationFailure):
    """Unknown survey or prompt, malformed definition, or a value of the wrong type."""

    default_code = ErrorCode.INVALID_PROMPT_VALUE


class MediaCategory(models.TextChoices):
    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    AUDIO = "audio", "Audio"
    FILE = "file", "File"


class PromptType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    HOURS_BEFORE_NOW = "hours_before_now"
    TIMESTAMP = "timestamp"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"

    @property
    def media_category(self) -> MediaCategory | None:
        return MEDIA_CATEGORY_BY_PROMPT_TYPE[self]

    @property
    def is_media(self) -> bool:
        return self.media_category is not None


MEDIA_CATEGORY_BY_PROMPT_TYPE: dict[PromptType, MediaCategory | None] = {
    PromptType.TEXT: None,
    PromptType.NUMBER: None,
    PromptType.HOURS_BEFORE_NOW: None,
    PromptType.TIMESTAMP: None,
    PromptType.SINGLE_CHOICE: None,
    PromptType.MULTI_CHOICE: None,
    PromptType.PHOTO: MediaCategory.IMAGE,
    PromptType.VIDEO: MediaCategory.VIDEO,
    PromptType.AUDIO: MediaCategory.AUDIO,
    PromptType.FILE: MediaCategory.FILE,
}


class NoResponse(str, Enum):
    """Why a displayed (or hidden) prompt has no answer."""

    SKIPPED = "SKIPPED"
    NOT_DISPLAYED = "NOT_DISPLAYED"


# -------------------- Value parsers --------------------


def _invalid(prompt: PromptDefinition, raw: Any, expected: str) -> DefinitionError:
    return DefinitionError(
        f"Prompt '{prompt.id}' expects {expected}, got {raw!r}.",
        ErrorCode.INVALID_PROMPT_VALUE,
    )


def _parse_text(prompt: PromptDefinition, raw: Any):
    if not isinstance(raw, str):
        raise _invalid(prompt, raw, "a string")
    return raw


def _parse_number(prompt: PromptDefinition, raw: Any):
    if isinstance(raw, bool):
        raise _invalid(prompt, raw, "a number")
    if isinstance(raw, str):
        try:
            raw = int(raw)
        except ValueError:
            try:
                raw = float(raw)
            except ValueError:
                raise _invalid(prompt, raw, "a number") from None
    if not isinstance(raw, (int, float)) or (isinstance(raw, float) and not math.isfinite(raw)):
        raise _invalid(prompt, raw, "a number")
    if prompt.min_value is not None and raw < prompt.min_value:
        raise _invalid(prompt, raw, f"a number >= {prompt.min_value}")
    if prompt.max_value is not None and raw > prompt.max_value:
        raise _invalid(prompt, raw, f"a number <= {prompt.max_value}")
    return raw


def _parse_hours_before_now(prompt: PromptDefinition, raw: Any):
    value = _parse_number(prompt, raw)
    if value < 0:
        raise _invalid(prompt, raw, "a non-negative number of hours")
    return value


def _parse_timestamp(prompt: PromptDefinition, raw: Any):
    if not isinstance(raw, str):
        raise _invalid(prompt, raw, "an ISO-8601 timestamp")
    try:
        parsed = parse_datetime(raw)
    except ValueError:
        parsed = None
    if parsed is None:
        raise _invalid(prompt, raw, "an ISO-8601 timestamp")
    return raw


def _choice_key(prompt: PromptDefinition, raw: Any) -> str:
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        raise _invalid(prompt, raw, "a choice key")
    key = str(raw)
    if key not in prompt.choices:
        raise _invalid(prompt, raw, f"one of {sorted(prompt.choices)}")
    return key


def _parse_single_choice(prompt: PromptDefinition, raw: Any):
    return _choice_key(prompt, raw)


def _parse_multi_choice(prompt: PromptDefinition, raw: Any):
    if not isinstance(raw, list):
        raise _invalid(prompt, raw, "a list of choice keys")
    keys = [_choice_key(prompt, item) for item in raw]
    if len(set(keys)) != len(keys):
        raise _invalid(prompt, raw, "distinct choice keys")
    return keys


def _parse_media_reference(prompt: PromptDefinition, raw: Any):
    try:
        return str(uuid.UUID(str(raw)))
    except ValueError:
        raise _invalid(prompt, raw, "a media UUID") from None


VALUE_PARSERS: dict[PromptType, Callable[[PromptDefinition, Any], Any]] = {
    PromptType.TEXT: _parse_text,
    PromptType.NUMBER: _parse_number,
    PromptType.HOURS_BEFORE_NOW: _parse_hours_before_now,
    PromptType.TIMESTAMP: _parse_timestamp,
    PromptType.SINGLE_CHOICE: _parse_single_choice,
    PromptType.MULTI_CHOICE: _parse_multi_choice,
    PromptType.PHOTO: _parse_media_reference,
    PromptType.VIDEO: _parse_media_reference,
    PromptType.AUDIO: _parse_media_reference,
    PromptType.FILE: _parse_media_reference,
}


# -------------------- Definitions --------------------


@dataclass(frozen=True)
class PromptDefinition:
    id: str
    type: PromptType
    text: str = ""
    skippable: bool = True
    repeatable_set_id: str | None = None
    choices: dict[str, str] = field(default_factory=dict)
    min_value: float | None = None
    max_value: float | None = None
    max_file_size: int | None = None

    @classmethod
    def from_json(cls, data: dict, repeatable_set_id: str | None = None) -> PromptDefinition:
        prompt_id = data.get("id")
        if not isinstance(prompt_id, str) or not prompt_id:
            raise DefinitionError(
                "Every prompt needs a non-empty string 'id'.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            )
        try:
            prompt_type = PromptType(data.get("type"))
        except ValueError:
            raise DefinitionError(
                f"Prompt '{prompt_id}' has an unknown type {data.get('type')!r}.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            ) from None

        choices = {str(k): str(v) for k, v in (data.get("choices") or {}).items()}
        if prompt_type in (PromptType.SINGLE_CHOICE, PromptType.MULTI_CHOICE) and not choices:
            raise DefinitionError(
                f"Choice prompt '{prompt_id}' declares no choices.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            )

        max_file_size = data.get("max_file_size")
        if max_file_size is not None and (not isinstance(max_file_size, int) or max_file_size <= 0):
            raise DefinitionError(
                f"Prompt '{prompt_id}' has an invalid max_file_size.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            )

        return cls(
            id=prompt_id,
            type=prompt_type,
            text=data.get("text", ""),
            skippable=bool(data.get("skippable", True)),
            repeatable_set_id=repeatable_set_id,
            choices=choices,
            min_value=data.get("min"),
            max_value=data.get("max"),
            max_file_size=max_file_size,
        )

    def to_json(self) -> dict:
        data: dict[str, Any] = {"id": self.id, "type": self.type.value, "skippable": self.skippable}
        if self.text:
            data["text"] = self.text
        if self.choices:
            data["choices"] = dict(self.choices)
        if self.min_value is not None:
            data["min"] = self.min_value
        if self.max_value is not None:
            data["max"] = self.max_value
        if self.max_file_size is not None:
            data["max_file_size"] = self.max_file_size
        return data

    def parse_value(self, raw: Any):
        """Validate an uploaded answer and return its canonical value.

        The NoResponse markers are accepted for every prompt type; SKIPPED only
        when the prompt is skippable.
        """
        if isinstance(raw, str) and raw in NoResponse.__members__:
            marker = NoResponse(raw)
            if marker is NoResponse.SKIPPED and not self.skippable:
                raise DefinitionError(f"Prompt '{self.id}' cannot be skipped.")
            return marker
        return VALUE_PARSERS[self.type](self, raw)

    def to_stored(self, value) -> str:
        if isinstance(value, NoResponse):
            return value.value
        if self.type is PromptType.MULTI_CHOICE:
            return json.dumps(value)
        return str(value)

    def parse_stored(self, text: str):
        """Rebuild a value previously written with ``to_stored``."""
        if text in NoResponse.__members__:
            return NoResponse(text)
        if self.type is PromptType.MULTI_CHOICE:
            try:
                return self.parse_value(json.loads(text))
            except json.JSONDecodeError:
                raise _invalid(self, text, "a stored list of choice keys") from None
        return self.parse_value(text)


@dataclass(frozen=True)
class SurveyDefinition:
    id: str
    version: int = 1
    title: str = ""
    description: str = ""
    prompts: dict[str, PromptDefinition] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict) -> SurveyDefinition:
        survey_id = data.get("id")
        if not isinstance(survey_id, str) or not survey_id:
            raise DefinitionError(
                "Every survey needs a non-empty string 'id'.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            )

        version = data.get("version", 1)
        if not isinstance(version, int) or isinstance(version, bool) or version < 1:
            raise DefinitionError(
                f"Survey '{survey_id}' has an invalid version {version!r}.",
                ErrorCode.INVALID_CAMPAIGN_DEFINITION,
            )

        prompts: dict[str, PromptDefinition] = {}

        def add(prompt: PromptDefinition) -> None:
            if prompt.id in prompts:
                raise DefinitionError(
                    f"Survey '{survey_id}' defines prompt '{prompt.id}' twice.",
                    ErrorCode.INVALID_CAMPAIGN_DEFINITION,
                )
            prompts[prompt.id] = prompt

        for item in data.get("prompts", []):
            set_id = item.get("repeatable_set_id")
            if set_id:
                for nested in item.get("prompts", []):
                    add(PromptDefinition.from_json(nested, repeatable_set_id=set_id))
            else:
                add(PromptDefinition.from_json(item))

        return cls(
            id=survey_id,
            version=version,
            title=data.get("title", ""),
            description=data.get("description", ""),
            prompts=prompts,
        )

    @property
    def repeatable_set_ids(self) -> set[str]:
        return {p.repeatable_set_id for p in self.prompts.values() if p.repeatable_set_id}

    def to_json(self) -> dict:
        """The definition document, with repeatable-set prompts nested again."""
        prompts: list[dict] = []
        sets: dict[str, dict] = {}
        for prompt in self.prompts.values():
            if prompt.repeatable_set_id is None:
                prompts.append(prompt.to_json())
                continue
            if prompt.repeatable_set_id not in sets:
                sets[prompt.repeatable_set_id] = {
                    "repeatable_set_id": prompt.repeatable_set_id,
                    "prompts": [],
                }
                prompts.append(sets[prompt.repeatable_set_id])
            sets[prompt.repeatable_set_id]["prompts"].append(prompt.to_json())
        return {
            "id": self.id,
            "version": self.version,
            "title": self.title,
            "description": self.description,
            "prompts": prompts,
        }

    def get_prompt(self, prompt_id: str) -> PromptDefinition:
        try:
            return self.prompts[prompt_id]
        except KeyError:
            raise DefinitionError(
                f"Survey '{self.id}' has no prompt '{prompt_id}'.",
                ErrorCode.UNKNOWN_PROMPT,
            ) from None


@dataclass(frozen=True)
class CampaignDefinition:
    urn: str
    surveys: dict[str, SurveyDefinition] = field(default_factory=dict)

    @classmethod
    def from_json(cls, urn: str, data: dict | None) -> CampaignDefinition:
        surveys: dict[str, SurveyDefinition] = {}
        for item in (data or {}).get("surveys", []):
            survey = SurveyDefinition.from_json(item)
            if survey.id in surveys:
                raise DefinitionError(
                    f"Campaign '{urn}' defines survey '{survey.id}' twice.",
                    ErrorCode.INVALID_CAMPAIGN_DEFINITION,
                )
            surveys[survey.id] = survey
        return cls(urn=urn, surveys=surveys)

    @classmethod
    def from_campaign(cls, campaign) -> CampaignDefinition:
        return cls.from_json(campaign.urn, campaign.definition)

    def get_survey(self, survey_id: str) -> SurveyDefinition:
        try:
            return self.surveys[survey_id]
        except KeyError:
            raise DefinitionError(
                f"Campaign '{self.urn}' has no survey '{survey_id}'.",
                ErrorCode.UNKNOWN_SURVEY,
            ) from None

    def get_prompt(self, survey_id: str, prompt_id: str) -> PromptDefinition:
        return self.get_survey(survey_id).get_prompt(prompt_id)
