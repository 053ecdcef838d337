"""
Survey-response orchestration: create, update, read, privacy and delete.

Create is partial-success: duplicates and responses with bad media are
reported by index while the rest of the batch is stored. Update is
all-or-nothing: the whole batch must be owned by the uploader, exist already,
and keep its survey identity, or nothing changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.db import transaction

from sensing_app.campaigns.definitions import CampaignDefinition
from sensing_app.campaigns.models import Campaign
from sensing_app.core.db import run_in_transaction
from sensing_app.core.exceptions import (
    ErrorCode,
    InsufficientPermission,
    NotFound,
    ValidationFailure,
)

from ..access import AccessControlResolver
from ..criteria import SurveyResponseCriteria
from ..domain import PrivacyState, SurveyResponseRecord
from ..media import MediaMap, MediaStore, verify_media_for_response
from ..queries import DuplicateSurveyResponse, SurveyResponseQueries

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    created_ids: list[str] = field(default_factory=list)
    duplicate_indices: list[int] = field(default_factory=list)
    failed_indices: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)


class SurveyResponseService:
    def __init__(self, queries: SurveyResponseQueries, media_store: MediaStore):
        self.queries = queries
        self.media_store = media_store

    # -------------------- Create --------------------

    def create_responses(
        self,
        owner,
        client: str,
        campaign: Campaign,
        responses: list[SurveyResponseRecord],
        media: MediaMap,
    ) -> UploadResult:
        """Store a batch of new responses.

        The first occurrence of a UUID within the batch wins; later ones, and
        any UUID already stored, are reported in ``duplicate_indices``.
        Responses whose media does not check out are reported in
        ``failed_indices``. Neither stops the rest of the batch.
        """
        result = UploadResult()
        stored = self.queries.get_existing_ids(r.uuid for r in responses)
        seen: set[str] = set()

        for index, record in enumerate(responses):
            if record.uuid in seen or record.uuid in stored:
                result.duplicate_indices.append(index)
                seen.add(record.uuid)
                continue
            seen.add(record.uuid)

            try:
                used_media = verify_media_for_response(record, media)
            except ValidationFailure as exc:
                logger.warning(f"Rejecting survey response {record.uuid}: {exc.message}")
                result.failed_indices.append(index)
                result.errors[index] = exc.message
                continue

            try:
                with self.media_store.removing_files_on_failure() as saved, transaction.atomic():
                    survey_response = self.queries.insert_survey_response(
                        owner, client, campaign, record
                    )
                    for uploaded in used_media:
                        saved.append(
                            self.media_store.save_media(owner, uploaded, survey_response)
                        )
            except DuplicateSurveyResponse:
                result.duplicate_indices.append(index)
                continue
            except ValidationFailure as exc:
                logger.warning(f"Rejecting survey response {record.uuid}: {exc.message}")
                result.failed_indices.append(index)
                result.errors[index] = exc.message
                continue

            result.created_ids.append(record.uuid)

        logger.info(
            f"{owner} uploaded {len(responses)} responses to {campaign.urn}: "
            f"{len(result.created_ids)} stored, {len(result.duplicate_indices)} duplicate, "
            f"{len(result.failed_indices)} failed"
        )
        return result

    # -------------------- Update --------------------

    def update_responses(
        self,
        owner,
        client: str,
        campaign: Campaign,
        definition: CampaignDefinition,
        responses: list[SurveyResponseRecord],
        media: MediaMap,
    ) -> list[str]:
        """Replace existing responses. Any failed precondition aborts the batch."""
        uuids = [record.uuid for record in responses]
        if len(set(uuids)) != len(uuids):
            raise ValidationFailure(
                "The same survey response appears more than once in the batch.",
                ErrorCode.DUPLICATE_SURVEY_RESPONSE,
            )
        if not responses:
            return []

        username = owner.get_username()
        criteria = SurveyResponseCriteria(
            campaign_urn=campaign.urn,
            requester=username,
            survey_response_ids=frozenset(uuids),
            usernames=frozenset([username]),
            skip=0,
            limit=len(uuids),
        )
        existing, total = self.queries.retrieve_survey_responses(criteria, definition)
        if total != len(uuids):
            raise InsufficientPermission(
                "Only the owner of an existing survey response may update it."
            )

        existing_by_id = {record.uuid: record for record in existing}
        for record in responses:
            if existing_by_id[record.uuid].survey.id != record.survey.id:
                raise ValidationFailure(
                    f"Survey response {record.uuid} may not change its survey.",
                    ErrorCode.SURVEY_CHANGED,
                )

        new_media = {}
        for record in responses:
            stored_ids = existing_by_id[record.uuid].media_ids
            used = verify_media_for_response(record, media, stored_media_ids=stored_ids)
            new_media[record.uuid] = [u for u in used if u.uuid not in stored_ids]

        with self.media_store.removing_files_on_failure() as saved, run_in_transaction(
            "updating survey responses"
        ):
            for record in responses:
                survey_response = self.queries.update_survey_response(client, record)
                for uploaded in new_media[record.uuid]:
                    saved.append(self.media_store.save_media(owner, uploaded, survey_response))

        # Media an updated response stopped referencing
        for record in responses:
            for media_id in existing_by_id[record.uuid].media_ids - record.media_ids:
                self.media_store.delete_media(media_id)

        logger.info(f"{owner} updated {len(responses)} responses in {campaign.urn}")
        return uuids

    # -------------------- Read / privacy / delete --------------------

    def read_responses(
        self,
        criteria: SurveyResponseCriteria,
        definition: CampaignDefinition,
        resolver: AccessControlResolver | None = None,
    ) -> tuple[list[SurveyResponseRecord], int]:
        return self.queries.retrieve_survey_responses(criteria, definition, resolver)

    def get_privacy_states(self) -> list[PrivacyState]:
        return self.queries.retrieve_privacy_states()

    def get_campaign_urn(self, survey_response_id: str) -> str:
        urn = self.queries.get_campaign_urn_for_survey_response(survey_response_id)
        if urn is None:
            raise NotFound("Unknown survey response.")
        return urn

    def update_privacy_state(self, survey_response_ids, privacy_state: PrivacyState) -> int:
        return self.queries.update_privacy_state(survey_response_ids, privacy_state)

    def delete_response(self, survey_response_id: str) -> None:
        """Delete a response's media, then the response.

        The two steps are not atomic: if a media deletion fails, media removed
        before it stays removed and the response row remains. Media left behind
        by a failure after that point is collected by ``sweep_orphaned_media``.
        """
        for media_id in self.queries.get_media_ids(survey_response_id):
            self.media_store.delete_media(media_id)
        self.queries.delete_survey_response(survey_response_id)
        logger.info(f"Deleted survey response {survey_response_id}")
