import copy
import uuid
from types import SimpleNamespace

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils.datastructures import MultiValueDict
from rest_framework_simplejwt.tokens import RefreshToken

from sensing_app.campaigns.definitions import CampaignDefinition
from sensing_app.campaigns.models import Campaign, CampaignMembership
from sensing_app.responses.criteria import SurveyResponseCriteria
from sensing_app.responses.media import collect_uploaded_media
from sensing_app.responses.services import get_survey_response_service
from sensing_app.responses.upload import parse_survey_responses

User = get_user_model()
TEST_PASSWORD = "test-pass"

CAMPAIGN_URN = "urn:campaign:demo"
BASE_TIME = 1_700_000_000_000

DEFINITION = {
    "surveys": [
        {
            "id": "mood",
            "title": "Mood check",
            "description": "How are you today?",
            "prompts": [
                {"id": "feeling", "type": "text"},
                {"id": "energy", "type": "single_choice", "choices": {"0": "Low", "1": "High"}},
                {"id": "selfie", "type": "photo", "max_file_size": 1024},
                {"id": "symptoms", "type": "multi_choice", "choices": {"a": "Headache", "b": "Cough"}},
                {"id": "consent", "type": "text", "skippable": False},
                {
                    "repeatable_set_id": "meals",
                    "prompts": [
                        {"id": "food", "type": "text"},
                        {"id": "portions", "type": "number", "min": 0, "max": 10},
                    ],
                },
            ],
        },
        {
            "id": "sleep",
            "version": 2,
            "title": "Sleep diary",
            "prompts": [
                {"id": "hours", "type": "number", "min": 0, "max": 24},
                {"id": "woke", "type": "timestamp"},
                {"id": "nap", "type": "hours_before_now"},
                {"id": "recording", "type": "audio"},
                {"id": "attachment", "type": "file", "max_file_size": 4096},
            ],
        },
    ]
}


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    return settings.MEDIA_ROOT


@pytest.fixture(autouse=True)
def clear_throttle_history():
    cache.clear()


@pytest.fixture
def definition_json():
    return copy.deepcopy(DEFINITION)


@pytest.fixture
def campaign_definition(definition_json):
    return CampaignDefinition.from_json(CAMPAIGN_URN, definition_json)


@pytest.fixture
def users(db):
    return SimpleNamespace(
        alice=User.objects.create_user(username="alice", password=TEST_PASSWORD),
        bob=User.objects.create_user(username="bob", password=TEST_PASSWORD),
        carol=User.objects.create_user(username="carol", password=TEST_PASSWORD),
        dave=User.objects.create_user(username="dave", password=TEST_PASSWORD),
        sam=User.objects.create_user(username="sam", password=TEST_PASSWORD),
        eve=User.objects.create_user(username="eve", password=TEST_PASSWORD),
        root=User.objects.create_superuser(username="root", password=TEST_PASSWORD),
    )


@pytest.fixture
def campaign(db, users, definition_json):
    campaign = Campaign.objects.create(
        urn=CAMPAIGN_URN,
        name="Demo",
        editable_responses=True,
        definition=definition_json,
    )
    Role = CampaignMembership.Role
    for user, role in (
        (users.alice, Role.PARTICIPANT),
        (users.bob, Role.PARTICIPANT),
        (users.carol, Role.ANALYST),
        (users.dave, Role.AUTHOR),
        (users.sam, Role.SUPERVISOR),
    ):
        CampaignMembership.objects.create(campaign=campaign, user=user, role=role)
    return campaign


@pytest.fixture
def service():
    return get_survey_response_service()


@pytest.fixture
def make_survey():
    """Build one upload payload item; keyword arguments override fields."""

    def _make(survey_key=None, time=BASE_TIME, survey_id="mood", responses=None, **extra):
        if responses is None:
            responses = [
                {"prompt_id": "feeling", "value": "fine"},
                {"prompt_id": "energy", "value": "1"},
            ]
        payload = {
            "survey_key": survey_key or str(uuid.uuid4()),
            "time": time,
            "timezone": "Europe/London",
            "location_status": "unavailable",
            "survey_id": survey_id,
            "survey_launch_context": {"launch_time": time},
            "responses": responses,
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def make_photo():
    def _make(content=b"\xff\xd8\xff\xe0 not really a jpeg", name="selfie.jpg", content_type="image/jpeg"):
        return SimpleUploadedFile(name, content, content_type=content_type)

    return _make


@pytest.fixture
def store_responses(service, campaign, campaign_definition):
    """Validate and create payloads as ``user``; files map media UUID to upload."""

    def _store(user, payloads, files=None):
        records = parse_survey_responses(
            payloads,
            username=user.get_username(),
            client="test",
            definition=campaign_definition,
        )
        media = collect_uploaded_media(
            MultiValueDict({name: [upload] for name, upload in (files or {}).items()})
        )
        return service.create_responses(user, "test", campaign, records, media)

    return _store


@pytest.fixture
def read_responses(service, campaign, campaign_definition):
    def _read(requester, **criteria):
        return service.read_responses(
            SurveyResponseCriteria(
                campaign_urn=campaign.urn, requester=requester.get_username(), **criteria
            ),
            campaign_definition,
        )

    return _read


@pytest.fixture
def auth_header():
    def _header(user) -> dict:
        return {"HTTP_AUTHORIZATION": f"Bearer {RefreshToken.for_user(user).access_token}"}

    return _header
