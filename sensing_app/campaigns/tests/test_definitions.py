import uuid

import pytest

from sensing_app.campaigns.definitions import (
    MEDIA_CATEGORY_BY_PROMPT_TYPE,
    VALUE_PARSERS,
    CampaignDefinition,
    DefinitionError,
    MediaCategory,
    NoResponse,
    PromptType,
)
from sensing_app.core.exceptions import ErrorCode


def test_every_prompt_type_has_a_parser_and_media_entry():
    assert set(VALUE_PARSERS) == set(PromptType)
    assert set(MEDIA_CATEGORY_BY_PROMPT_TYPE) == set(PromptType)


@pytest.mark.parametrize(
    "prompt_type,category",
    [
        (PromptType.PHOTO, MediaCategory.IMAGE),
        (PromptType.VIDEO, MediaCategory.VIDEO),
        (PromptType.AUDIO, MediaCategory.AUDIO),
        (PromptType.FILE, MediaCategory.FILE),
        (PromptType.TEXT, None),
        (PromptType.MULTI_CHOICE, None),
    ],
)
def test_media_category(prompt_type, category):
    assert prompt_type.media_category == category
    assert prompt_type.is_media is (category is not None)


def test_campaign_definition_parses_surveys_and_repeatable_sets(campaign_definition):
    assert set(campaign_definition.surveys) == {"mood", "sleep"}
    mood = campaign_definition.get_survey("mood")
    assert mood.title == "Mood check"
    assert mood.repeatable_set_ids == {"meals"}
    assert mood.get_prompt("food").repeatable_set_id == "meals"
    assert mood.get_prompt("feeling").repeatable_set_id is None
    assert campaign_definition.get_prompt("sleep", "hours").type is PromptType.NUMBER


def test_unknown_survey_and_prompt(campaign_definition):
    with pytest.raises(DefinitionError) as exc:
        campaign_definition.get_survey("nope")
    assert exc.value.code == ErrorCode.UNKNOWN_SURVEY

    with pytest.raises(DefinitionError) as exc:
        campaign_definition.get_prompt("mood", "nope")
    assert exc.value.code == ErrorCode.UNKNOWN_PROMPT


@pytest.mark.parametrize(
    "survey",
    [
        {"id": "s", "prompts": [{"id": "a", "type": "text"}, {"id": "a", "type": "number"}]},
        {"id": "s", "prompts": [{"id": "a", "type": "sketch"}]},
        {"id": "s", "prompts": [{"id": "a", "type": "single_choice"}]},
        {"id": "s", "prompts": [{"id": "a", "type": "photo", "max_file_size": -5}]},
        {"id": "", "prompts": []},
        {"id": "s", "version": 0, "prompts": []},
        {"id": "s", "version": "2", "prompts": []},
        {"id": "s", "version": True, "prompts": []},
    ],
)
def test_malformed_definitions_are_rejected(survey):
    with pytest.raises(DefinitionError) as exc:
        CampaignDefinition.from_json("urn:x", {"surveys": [survey]})
    assert exc.value.code == ErrorCode.INVALID_CAMPAIGN_DEFINITION


def test_duplicate_survey_is_rejected():
    surveys = [{"id": "s", "prompts": []}, {"id": "s", "prompts": []}]
    with pytest.raises(DefinitionError):
        CampaignDefinition.from_json("urn:x", {"surveys": surveys})


def test_empty_definition():
    assert CampaignDefinition.from_json("urn:x", None).surveys == {}


def test_survey_versions(campaign_definition):
    assert campaign_definition.get_survey("mood").version == 1
    assert campaign_definition.get_survey("sleep").version == 2


def test_survey_to_json_keeps_repeatable_sets_in_place(campaign_definition):
    mood = campaign_definition.get_survey("mood").to_json()

    assert [p.get("id", p.get("repeatable_set_id")) for p in mood["prompts"]] == [
        "feeling",
        "energy",
        "selfie",
        "symptoms",
        "consent",
        "meals",
    ]
    assert [p["id"] for p in mood["prompts"][-1]["prompts"]] == ["food", "portions"]
    assert mood["prompts"][1]["choices"] == {"0": "Low", "1": "High"}
    assert mood["prompts"][4]["skippable"] is False


class TestParseValue:
    @pytest.fixture
    def prompt(self, campaign_definition):
        return lambda survey_id, prompt_id: campaign_definition.get_prompt(survey_id, prompt_id)

    def test_numbers(self, prompt):
        hours = prompt("sleep", "hours")
        assert hours.parse_value(7) == 7
        assert hours.parse_value("3") == 3
        assert hours.parse_value("2.5") == 2.5
        for bad in (True, "lots", 25, -1, float("nan")):
            with pytest.raises(DefinitionError):
                hours.parse_value(bad)

    def test_hours_before_now_must_not_be_negative(self, prompt):
        nap = prompt("sleep", "nap")
        assert nap.parse_value(2) == 2
        with pytest.raises(DefinitionError):
            nap.parse_value(-1)

    def test_timestamp(self, prompt):
        woke = prompt("sleep", "woke")
        assert woke.parse_value("2024-03-01T07:30:00+00:00") == "2024-03-01T07:30:00+00:00"
        with pytest.raises(DefinitionError):
            woke.parse_value("yesterday")

    def test_choices(self, prompt):
        energy = prompt("mood", "energy")
        assert energy.parse_value(1) == "1"
        with pytest.raises(DefinitionError):
            energy.parse_value("2")

        symptoms = prompt("mood", "symptoms")
        assert symptoms.parse_value(["a", "b"]) == ["a", "b"]
        for bad in ("a", ["a", "a"], ["z"]):
            with pytest.raises(DefinitionError):
                symptoms.parse_value(bad)

    def test_media_reference(self, prompt):
        media_id = str(uuid.uuid4())
        assert prompt("mood", "selfie").parse_value(media_id.upper()) == media_id
        with pytest.raises(DefinitionError):
            prompt("mood", "selfie").parse_value("selfie.jpg")

    def test_no_response_markers(self, prompt):
        assert prompt("mood", "feeling").parse_value("SKIPPED") is NoResponse.SKIPPED
        consent = prompt("mood", "consent")
        assert consent.parse_value("NOT_DISPLAYED") is NoResponse.NOT_DISPLAYED
        with pytest.raises(DefinitionError):
            consent.parse_value("SKIPPED")

    def test_stored_form(self, prompt):
        symptoms = prompt("mood", "symptoms")
        assert symptoms.to_stored(["a", "b"]) == '["a", "b"]'
        assert symptoms.parse_stored('["b"]') == ["b"]
        assert symptoms.to_stored(NoResponse.SKIPPED) == "SKIPPED"
        assert symptoms.parse_stored("SKIPPED") is NoResponse.SKIPPED
        with pytest.raises(DefinitionError):
            symptoms.parse_stored("a,b")

        assert prompt("sleep", "hours").parse_stored("8") == 8
