"""
Validation of uploaded survey responses.

A client uploads a JSON list of survey responses::

    {
        "survey_key": "5f1b7b0e-...",          # optional, generated when absent
        "time": 1700000000000,                 # epoch millis
        "timezone": "Europe/London",
        "location_status": "valid",            # valid|inaccurate|stale|unavailable
        "location": {"latitude": 51.5, "longitude": -0.1, "accuracy": 12,
                     "provider": "gps", "time": 1700000000000,
                     "timezone": "Europe/London"},
        "survey_id": "mood",
        "survey_launch_context": {"launch_time": 1700000000000},
        "privacy_state": "private",            # optional
        "responses": [
            {"prompt_id": "feeling", "value": "fine"},
            {"repeatable_set_id": "meals",
             "responses": [[{"prompt_id": "food", "value": "toast"}]]}
        ]
    }

Any malformed response rejects the whole upload.
"""

from __future__ import annotations

import uuid
import zoneinfo
from typing import Any

from sensing_app.campaigns.definitions import (
    CampaignDefinition,
    DefinitionError,
    SurveyDefinition,
)
from sensing_app.core.exceptions import ErrorCode, ValidationFailure

from .domain import Location, PrivacyState, PromptAnswer, SurveyResponseRecord
from .models import SurveyResponse

LOCATION_STATUSES = set(SurveyResponse.LocationStatus.values)


def _fail(index: int, message: str) -> ValidationFailure:
    return ValidationFailure(
        f"Survey response {index}: {message}", ErrorCode.INVALID_SURVEY_RESPONSE
    )


def _survey_key(index: int, data: dict) -> str:
    raw = data.get("survey_key")
    if raw is None:
        return str(uuid.uuid4())
    try:
        return str(uuid.UUID(str(raw)))
    except ValueError:
        raise _fail(index, f"survey_key {raw!r} is not a UUID.") from None


def _epoch_millis(index: int, data: dict) -> int:
    raw = data.get("time")
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise _fail(index, "time must be an integer number of milliseconds.")
    return raw


def _timezone(index: int, data: dict) -> str:
    raw = data.get("timezone")
    if not isinstance(raw, str) or not raw:
        raise _fail(index, "timezone is required.")
    try:
        zoneinfo.ZoneInfo(raw)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        raise _fail(index, f"unknown timezone {raw!r}.") from None
    return raw


def _location(index: int, data: dict) -> tuple[str, Location | None]:
    status = data.get("location_status")
    if status not in LOCATION_STATUSES:
        raise _fail(index, f"location_status must be one of {sorted(LOCATION_STATUSES)}.")
    raw = data.get("location")
    if status == SurveyResponse.LocationStatus.UNAVAILABLE:
        if raw:
            raise _fail(index, "a location was given but its status is unavailable.")
        return status, None
    if not isinstance(raw, dict):
        raise _fail(index, "a location is required unless its status is unavailable.")
    try:
        return status, Location.from_json(raw)
    except (KeyError, TypeError, ValueError):
        raise _fail(index, "location needs numeric latitude and longitude.") from None


def _privacy_state(index: int, data: dict, default: PrivacyState) -> PrivacyState:
    raw = data.get("privacy_state")
    if raw is None:
        return default
    try:
        return PrivacyState(raw)
    except ValueError:
        raise _fail(index, f"unknown privacy state {raw!r}.") from None


def _answer(
    index: int,
    survey: SurveyDefinition,
    item: Any,
    repeatable_set_id: str | None,
    iteration: int | None,
) -> PromptAnswer:
    if not isinstance(item, dict) or "prompt_id" not in item:
        raise _fail(index, "every prompt response needs a prompt_id.")
    try:
        prompt = survey.get_prompt(item["prompt_id"])
        if prompt.repeatable_set_id != repeatable_set_id:
            raise DefinitionError(
                f"Prompt '{prompt.id}' does not belong to "
                + (f"repeatable set '{repeatable_set_id}'." if repeatable_set_id else "the survey body.")
            )
        if "value" not in item:
            raise DefinitionError(f"Prompt '{prompt.id}' has no value.")
        value = prompt.parse_value(item["value"])
    except DefinitionError as exc:
        raise ValidationFailure(f"Survey response {index}: {exc.message}", exc.code) from None
    return PromptAnswer(prompt=prompt, value=value, repeatable_set_iteration=iteration)


def _answers(index: int, survey: SurveyDefinition, items: Any) -> list[PromptAnswer]:
    if not isinstance(items, list):
        raise _fail(index, "responses must be a list.")
    answers: list[PromptAnswer] = []
    for item in items:
        set_id = item.get("repeatable_set_id") if isinstance(item, dict) else None
        if set_id is None:
            answers.append(_answer(index, survey, item, None, None))
            continue
        if set_id not in survey.repeatable_set_ids:
            raise _fail(index, f"unknown repeatable set {set_id!r}.")
        iterations = item.get("responses", [])
        if not isinstance(iterations, list):
            raise _fail(index, f"repeatable set {set_id!r} needs a list of iterations.")
        for iteration, iteration_items in enumerate(iterations):
            if not isinstance(iteration_items, list):
                raise _fail(index, f"iteration {iteration} of {set_id!r} must be a list.")
            for nested in iteration_items:
                answers.append(_answer(index, survey, nested, set_id, iteration))
    return answers


def parse_survey_response(
    index: int,
    data: Any,
    *,
    username: str,
    client: str,
    definition: CampaignDefinition,
    default_privacy_state: PrivacyState,
) -> SurveyResponseRecord:
    if not isinstance(data, dict):
        raise _fail(index, "must be a JSON object.")
    try:
        survey = definition.get_survey(data.get("survey_id"))
    except DefinitionError as exc:
        raise ValidationFailure(f"Survey response {index}: {exc.message}", exc.code) from None

    launch_context = data.get("survey_launch_context", {})
    if not isinstance(launch_context, dict):
        raise _fail(index, "survey_launch_context must be an object.")

    status, location = _location(index, data)
    record = SurveyResponseRecord(
        uuid=_survey_key(index, data),
        username=username,
        campaign_urn=definition.urn,
        client=client,
        epoch_millis=_epoch_millis(index, data),
        timezone=_timezone(index, data),
        survey=survey,
        location_status=status,
        location=location,
        launch_context=launch_context,
        privacy_state=_privacy_state(index, data, default_privacy_state),
    )
    for answer in _answers(index, survey, data.get("responses")):
        if answer.key in record.answers:
            raise _fail(index, f"prompt '{answer.prompt.id}' is answered twice.")
        record.add_answer(answer)
    return record


def parse_survey_responses(
    payload: Any,
    *,
    username: str,
    client: str,
    definition: CampaignDefinition,
    default_privacy_state: PrivacyState = PrivacyState.PRIVATE,
) -> list[SurveyResponseRecord]:
    if not isinstance(payload, list):
        raise ValidationFailure(
            "The surveys parameter must be a JSON list.", ErrorCode.INVALID_SURVEY_RESPONSE
        )
    return [
        parse_survey_response(
            index,
            item,
            username=username,
            client=client,
            definition=definition,
            default_privacy_state=default_privacy_state,
        )
        for index, item in enumerate(payload)
    ]
