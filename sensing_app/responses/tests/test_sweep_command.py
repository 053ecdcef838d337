"""Tests for the sweep_orphaned_media management command."""

import uuid
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone
from django.utils.datastructures import MultiValueDict

from sensing_app.campaigns.definitions import MediaCategory
from sensing_app.responses.media import MediaStore, collect_uploaded_media
from sensing_app.responses.models import Media, SurveyResponse


@pytest.fixture
def save_media(users, make_photo):
    def _save(survey_response=None, age=timedelta(hours=2)):
        media_id = str(uuid.uuid4())
        uploaded = collect_uploaded_media(MultiValueDict({media_id: [make_photo()]}))[
            MediaCategory.IMAGE
        ][media_id]
        MediaStore().save_media(users.alice, uploaded, survey_response)
        Media.objects.filter(uuid=media_id).update(created_at=timezone.now() - age)
        return media_id

    return _save


@pytest.fixture
def stored_response(users, store_responses, make_survey):
    payload = make_survey()
    store_responses(users.alice, [payload])
    return SurveyResponse.objects.get(uuid=payload["survey_key"])


@pytest.mark.django_db
def test_sweeps_old_orphans_only(save_media, stored_response):
    orphan = save_media()
    recent_orphan = save_media(age=timedelta(minutes=5))
    attached = save_media(survey_response=stored_response)

    out = StringIO()
    call_command("sweep_orphaned_media", stdout=out)

    assert "Deleted 1 orphaned media item(s)" in out.getvalue()
    assert set(Media.objects.values_list("uuid", flat=True)) == {recent_orphan, attached}
    assert orphan not in out.getvalue()


@pytest.mark.django_db
def test_dry_run_makes_no_changes(save_media):
    orphan = save_media()

    out = StringIO()
    call_command("sweep_orphaned_media", "--dry-run", stdout=out)

    output = out.getvalue()
    assert "DRY RUN MODE" in output
    assert orphan in output
    assert "Would delete 1 orphaned media item(s)" in output
    assert Media.objects.filter(uuid=orphan).exists()


@pytest.mark.django_db
def test_min_age_is_configurable(save_media):
    save_media(age=timedelta(minutes=5))

    out = StringIO()
    call_command("sweep_orphaned_media", "--min-age-minutes", "1", stdout=out)

    assert "Deleted 1 orphaned media item(s)" in out.getvalue()
    assert not Media.objects.exists()
