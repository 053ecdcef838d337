import base64
import json
import uuid

import pytest

from sensing_app.campaigns.models import Campaign
from sensing_app.responses.models import AuditLog, Media, SurveyResponse

CAMPAIGN_URN = "urn:campaign:demo"
LIST_URL = f"/api/campaigns/{CAMPAIGN_URN}/responses"
UPLOAD_URL = f"{LIST_URL}/upload"
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 12


def detail_url(survey_response_id: str) -> str:
    return f"{LIST_URL}/{survey_response_id}"


def error_code(resp) -> str:
    return resp.json()["errors"][0]["code"]


def encoded(data: bytes) -> str:
    return base64.b64encode(data).decode()


@pytest.mark.django_db
class TestUpload:
    def test_multipart_upload_with_photo(self, client, users, campaign, auth_header, make_survey, make_photo):
        photo_id = str(uuid.uuid4())
        payload = make_survey(responses=[{"prompt_id": "selfie", "value": photo_id}])

        resp = client.post(
            UPLOAD_URL,
            data={"surveys": json.dumps([payload]), "client": "android", photo_id: make_photo()},
            **auth_header(users.alice),
        )

        assert resp.status_code == 200, resp.content
        body = resp.json()
        assert body["result"] == "success"
        assert body["created_ids"] == [payload["survey_key"]]
        assert body["duplicate_indices"] == [] and body["failed_indices"] == []
        assert SurveyResponse.objects.get(uuid=payload["survey_key"]).client == "android"
        assert Media.objects.filter(uuid=photo_id).exists()
        log = AuditLog.objects.get(action=AuditLog.Action.UPLOAD)
        assert log.actor == users.alice
        assert log.metadata["survey_response_ids"] == [payload["survey_key"]]

    def test_json_upload_reports_duplicates_and_failures(self, client, users, campaign, auth_header, make_survey):
        key = str(uuid.uuid4())
        missing_photo = make_survey(responses=[{"prompt_id": "selfie", "value": str(uuid.uuid4())}])

        resp = client.post(
            UPLOAD_URL,
            data=json.dumps(
                {"surveys": [make_survey(survey_key=key), make_survey(survey_key=key), missing_photo]}
            ),
            content_type="application/json",
            **auth_header(users.alice),
        )

        assert resp.status_code == 200, resp.content
        body = resp.json()
        assert body["created_ids"] == [key]
        assert body["duplicate_indices"] == [1]
        assert body["failed_indices"] == [2]
        assert "2" in body["errors"]

    def test_invalid_response_rejects_upload(self, client, users, campaign, auth_header, make_survey):
        resp = client.post(
            UPLOAD_URL,
            data={"surveys": json.dumps([make_survey(), make_survey(time="noon")])},
            **auth_header(users.alice),
        )
        assert resp.status_code == 400
        assert error_code(resp) == "invalid_survey_response"
        assert not SurveyResponse.objects.exists()

    def test_surveys_must_be_json(self, client, users, campaign, auth_header):
        resp = client.post(UPLOAD_URL, data={"surveys": "not json"}, **auth_header(users.alice))
        assert resp.status_code == 400

    def test_inline_image_with_multipart(self, client, users, campaign, auth_header, make_survey):
        photo_id = str(uuid.uuid4())
        payload = make_survey(responses=[{"prompt_id": "selfie", "value": photo_id}])

        resp = client.post(
            UPLOAD_URL,
            data={"surveys": json.dumps([payload]), "images": json.dumps({photo_id: encoded(JPEG)})},
            **auth_header(users.alice),
        )

        assert resp.status_code == 200, resp.content
        assert resp.json()["created_ids"] == [payload["survey_key"]]
        media = Media.objects.get(uuid=photo_id)
        assert media.content_type == "image/jpeg"
        assert media.size == len(JPEG)

    def test_inline_image_in_json_body(self, client, users, campaign, auth_header, make_survey):
        photo_id = str(uuid.uuid4())
        payload = make_survey(responses=[{"prompt_id": "selfie", "value": photo_id}])

        resp = client.post(
            UPLOAD_URL,
            data=json.dumps({"surveys": [payload], "images": {photo_id: encoded(JPEG)}}),
            content_type="application/json",
            **auth_header(users.alice),
        )

        assert resp.status_code == 200, resp.content
        assert Media.objects.filter(uuid=photo_id, survey_response__uuid=payload["survey_key"]).exists()

    def test_same_uuid_inline_and_as_a_part(self, client, users, campaign, auth_header, make_survey, make_photo):
        photo_id = str(uuid.uuid4())
        payload = make_survey(responses=[{"prompt_id": "selfie", "value": photo_id}])

        resp = client.post(
            UPLOAD_URL,
            data={
                "surveys": json.dumps([payload]),
                "images": json.dumps({photo_id: encoded(JPEG)}),
                photo_id: make_photo(),
            },
            **auth_header(users.alice),
        )

        assert resp.status_code == 400
        assert error_code(resp) == "invalid_media"
        assert not SurveyResponse.objects.exists()
        assert not Media.objects.exists()

    def test_inline_image_must_be_base64(self, client, users, campaign, auth_header, make_survey):
        photo_id = str(uuid.uuid4())
        payload = make_survey(responses=[{"prompt_id": "selfie", "value": photo_id}])

        resp = client.post(
            UPLOAD_URL,
            data={"surveys": json.dumps([payload]), "images": json.dumps({photo_id: "***"})},
            **auth_header(users.alice),
        )

        assert resp.status_code == 400
        assert error_code(resp) == "invalid_media"

    def test_only_participants_upload(self, client, users, campaign, auth_header, make_survey):
        resp = client.post(
            UPLOAD_URL, data={"surveys": json.dumps([make_survey()])}, **auth_header(users.carol)
        )
        assert resp.status_code == 403
        assert error_code(resp) == "insufficient_permission"

    def test_unknown_campaign(self, client, users, campaign, auth_header, make_survey):
        resp = client.post(
            "/api/campaigns/urn:campaign:nope/responses/upload",
            data={"surveys": json.dumps([make_survey()])},
            **auth_header(users.alice),
        )
        assert resp.status_code == 404
        assert error_code(resp) == "unknown_campaign"

    def test_campaign_must_be_running(self, client, users, campaign, auth_header, make_survey):
        campaign.running_state = Campaign.RunningState.STOPPED
        campaign.save()
        resp = client.post(
            UPLOAD_URL, data={"surveys": json.dumps([make_survey()])}, **auth_header(users.alice)
        )
        assert resp.status_code == 400
        assert error_code(resp) == "campaign_not_running"

    def test_client_campaign_timestamp(self, client, users, campaign, auth_header, make_survey):
        resp = client.post(
            UPLOAD_URL,
            data={
                "surveys": json.dumps([make_survey()]),
                "campaign_creation_timestamp": "2000-01-01T00:00:00Z",
            },
            **auth_header(users.alice),
        )
        assert resp.status_code == 400
        assert error_code(resp) == "campaign_out_of_date"

        resp = client.post(
            UPLOAD_URL,
            data={
                "surveys": json.dumps([make_survey()]),
                "campaign_creation_timestamp": campaign.created_at.isoformat(),
            },
            **auth_header(users.alice),
        )
        assert resp.status_code == 200, resp.content


@pytest.mark.django_db
class TestUpdate:
    def upload(self, client, header, payloads, **extra):
        return client.post(UPLOAD_URL, data={"surveys": json.dumps(payloads), **extra}, **header)

    def test_owner_updates(self, client, users, campaign, auth_header, make_survey):
        key = str(uuid.uuid4())
        header = auth_header(users.alice)
        self.upload(client, header, [make_survey(survey_key=key)])

        changed = make_survey(survey_key=key, responses=[{"prompt_id": "feeling", "value": "great"}])
        resp = self.upload(client, header, [changed], update="true")

        assert resp.status_code == 200, resp.content
        assert resp.json()["updated_ids"] == [key]
        stored = SurveyResponse.objects.get(uuid=key).prompt_responses.get()
        assert (stored.prompt_id, stored.response) == ("feeling", "great")
        assert AuditLog.objects.filter(action=AuditLog.Action.UPDATE).exists()

    def test_other_participant_cannot_update(self, client, users, campaign, auth_header, make_survey):
        key = str(uuid.uuid4())
        self.upload(client, auth_header(users.alice), [make_survey(survey_key=key)])

        resp = self.upload(client, auth_header(users.bob), [make_survey(survey_key=key)], update="true")

        assert resp.status_code == 403
        assert error_code(resp) == "insufficient_permission"

    def test_campaign_must_allow_edits(self, client, users, campaign, auth_header, make_survey):
        campaign.editable_responses = False
        campaign.save()
        resp = self.upload(client, auth_header(users.alice), [make_survey()], update="true")
        assert resp.status_code == 400
        assert error_code(resp) == "campaign_not_editable"


@pytest.mark.django_db
class TestRead:
    @pytest.fixture
    def stored(self, users, store_responses, make_survey):
        payloads = [make_survey(time=1_700_000_000_000 + i) for i in range(3)]
        store_responses(users.alice, payloads)
        return [p["survey_key"] for p in reversed(payloads)]

    def test_list_with_total(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, **auth_header(users.alice))

        assert resp.status_code == 200
        body = resp.json()
        assert [r["survey_key"] for r in body["data"]] == stored
        assert body["metadata"] == {"total": 3, "returned": 3}
        assert resp["X-Total-Count"] == "3"
        first = body["data"][0]
        assert first["user"] == "alice"
        assert first["survey_id"] == "mood"
        assert first["survey_title"] == "Mood check"
        assert first["privacy_state"] == "private"
        assert {r["prompt_id"]: r["value"] for r in first["responses"]} == {"feeling": "fine", "energy": "1"}

    def test_paging(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, {"num_to_skip": 1, "num_to_return": 1}, **auth_header(users.alice))
        body = resp.json()
        assert [r["survey_key"] for r in body["data"]] == stored[1:2]
        assert body["metadata"] == {"total": 3, "returned": 1}
        assert resp["X-Total-Count"] == "3"

    def test_page_size_cap(self, client, settings, users, stored, auth_header):
        settings.MAX_SURVEY_RESPONSE_PAGE_SIZE = 2
        resp = client.get(LIST_URL, **auth_header(users.alice))
        assert resp.json()["metadata"] == {"total": 3, "returned": 2}

    def test_aggregate(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, {"columns": "user:id"}, **auth_header(users.root))
        [row] = resp.json()["data"]
        assert row["count"] == 3
        assert row["aggregate"] == {"user:id": "alice"}
        assert row["responses"] == []

    def test_other_participant_sees_nothing(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, {"survey_response_ids": stored[0]}, **auth_header(users.bob))
        assert resp.status_code == 200
        assert resp.json()["data"] == []
        assert resp["X-Total-Count"] == "0"

    def test_non_member_forbidden(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, **auth_header(users.eve))
        assert resp.status_code == 403

    def test_invalid_parameter(self, client, users, stored, auth_header):
        resp = client.get(LIST_URL, {"columns": "user:name"}, **auth_header(users.alice))
        assert resp.status_code == 400
        assert error_code(resp) == "invalid_parameter"

    def test_requires_authentication(self, client, campaign):
        assert client.get(LIST_URL).status_code == 401

    def test_privacy_states(self, client, users, auth_header):
        resp = client.get("/api/responses/privacy-states", **auth_header(users.alice))
        assert resp.json()["data"] == ["private", "shared"]


@pytest.mark.django_db
class TestDeleteAndPrivacy:
    @pytest.fixture
    def shared_key(self, users, store_responses, make_survey):
        payload = make_survey(privacy_state="shared")
        store_responses(users.alice, [payload])
        return payload["survey_key"]

    def test_owner_deletes(self, client, users, shared_key, auth_header):
        resp = client.delete(detail_url(shared_key), **auth_header(users.alice))

        assert resp.status_code == 200
        assert not SurveyResponse.objects.filter(uuid=shared_key).exists()
        log = AuditLog.objects.get(action=AuditLog.Action.DELETE)
        assert log.metadata == {"survey_response_ids": [shared_key], "owner": "alice"}

    def test_supervisor_deletes(self, client, users, shared_key, auth_header):
        assert client.delete(detail_url(shared_key), **auth_header(users.sam)).status_code == 200

    def test_invisible_response_is_not_found(self, client, users, shared_key, auth_header):
        header = auth_header(users.alice)
        client.post(
            f"{detail_url(shared_key)}/privacy",
            data=json.dumps({"privacy_state": "private"}),
            content_type="application/json",
            **header,
        )
        resp = client.delete(detail_url(shared_key), **auth_header(users.bob))
        assert resp.status_code == 404
        assert error_code(resp) == "not_found"

        missing = client.delete(detail_url(str(uuid.uuid4())), **auth_header(users.bob))
        assert missing.status_code == 404
        assert missing.json() == resp.json()

    def test_visible_but_not_owned_is_forbidden(self, client, users, shared_key, auth_header):
        resp = client.delete(detail_url(shared_key), **auth_header(users.dave))
        assert resp.status_code == 403
        assert SurveyResponse.objects.filter(uuid=shared_key).exists()

    def test_privacy_update(self, client, users, shared_key, auth_header):
        resp = client.post(
            f"{detail_url(shared_key)}/privacy",
            data=json.dumps({"privacy_state": "private"}),
            content_type="application/json",
            **auth_header(users.alice),
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"privacy_state": "private"}
        assert SurveyResponse.objects.get(uuid=shared_key).privacy_state == "private"
        assert AuditLog.objects.filter(action=AuditLog.Action.PRIVACY_UPDATE).exists()

    def test_privacy_update_rejects_unknown_state(self, client, users, shared_key, auth_header):
        resp = client.post(
            f"{detail_url(shared_key)}/privacy",
            data=json.dumps({"privacy_state": "public"}),
            content_type="application/json",
            **auth_header(users.alice),
        )
        assert resp.status_code == 400
