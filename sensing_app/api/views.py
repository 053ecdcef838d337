from __future__ import annotations

import json
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import permissions, serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from sensing_app.campaigns.definitions import CampaignDefinition
from sensing_app.campaigns.models import Campaign
from sensing_app.campaigns.permissions import (
    require_can_modify,
    require_can_read,
    require_can_upload,
)
from sensing_app.core.exceptions import ErrorCode, NotFound, ValidationFailure
from sensing_app.responses.criteria import SurveyResponseCriteria
from sensing_app.responses.domain import PrivacyState
from sensing_app.responses.media import collect_uploaded_media, decode_inline_images
from sensing_app.responses.models import AuditLog
from sensing_app.responses.services import get_survey_response_service
from sensing_app.responses.upload import parse_survey_responses

from .params import build_criteria

logger = logging.getLogger(__name__)

User = get_user_model()


def get_campaign(campaign_urn: str) -> Campaign:
    try:
        return Campaign.objects.get(urn=campaign_urn)
    except Campaign.DoesNotExist:
        raise NotFound("Unknown campaign.", ErrorCode.UNKNOWN_CAMPAIGN) from None


def success(data=None, **extra) -> dict:
    body = {"result": "success"}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


class UploadSerializer(serializers.Serializer):
    surveys = serializers.CharField()
    client = serializers.CharField(max_length=255, default="api")
    update = serializers.BooleanField(default=False)
    campaign_creation_timestamp = serializers.DateTimeField(required=False)
    # JSON object of media UUID to BASE64-encoded image
    images = serializers.CharField(required=False)

    def validate_surveys(self, value):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise serializers.ValidationError("surveys must be a JSON list.")

    def to_internal_value(self, data):
        # JSON bodies may carry the documents themselves rather than their encoding
        if hasattr(data, "get"):
            if isinstance(data.get("surveys"), list):
                data = {**data, "surveys": json.dumps(data["surveys"])}
            if isinstance(data.get("images"), dict):
                data = {**data, "images": json.dumps(data["images"])}
        return super().to_internal_value(data)


class PrivacyStateSerializer(serializers.Serializer):
    privacy_state = serializers.ChoiceField(choices=PrivacyState.choices)


class SurveyResponseListView(APIView):
    """Read survey responses of one campaign, paged, with a total count."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, campaign_urn: str):
        campaign = get_campaign(campaign_urn)
        require_can_read(request.user, campaign)

        criteria = build_criteria(request.query_params, campaign.urn, request.user.get_username())
        service = get_survey_response_service()
        page, total = service.read_responses(
            criteria,
            CampaignDefinition.from_campaign(campaign),
            service.queries.new_resolver(),
        )
        response = Response(
            success(
                [record.to_json() for record in page],
                metadata={"total": total, "returned": len(page)},
            )
        )
        response["X-Total-Count"] = str(total)
        return response


class SurveyResponseUploadView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser, JSONParser]

    def post(self, request, campaign_urn: str):
        campaign = get_campaign(campaign_urn)
        require_can_upload(request.user, campaign)

        serializer = UploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = serializer.validated_data

        if not campaign.is_running:
            raise ValidationFailure("The campaign is not running.", ErrorCode.CAMPAIGN_NOT_RUNNING)
        if params["update"] and not campaign.editable_responses:
            raise ValidationFailure(
                "The campaign does not allow survey responses to be edited.",
                ErrorCode.CAMPAIGN_NOT_EDITABLE,
            )
        client_timestamp = params.get("campaign_creation_timestamp")
        if client_timestamp is not None and client_timestamp.replace(microsecond=0) != campaign.created_at.replace(microsecond=0):
            raise ValidationFailure(
                "The campaign has changed since the client downloaded it.",
                ErrorCode.CAMPAIGN_OUT_OF_DATE,
            )

        definition = CampaignDefinition.from_campaign(campaign)
        records = parse_survey_responses(
            params["surveys"],
            username=request.user.get_username(),
            client=params["client"],
            definition=definition,
            default_privacy_state=PrivacyState(settings.DEFAULT_SURVEY_RESPONSE_PRIVACY_STATE),
        )
        inline_images = decode_inline_images(params["images"]) if "images" in params else None
        media = collect_uploaded_media(request.FILES, inline_images)
        logger.info(
            f"Upload from {request.user} to {campaign.urn}: {len(records)} responses, "
            f"{sum(len(v) for v in media.values())} media"
        )

        service = get_survey_response_service()
        if params["update"]:
            updated = service.update_responses(
                request.user, params["client"], campaign, definition, records, media
            )
            AuditLog.objects.create(
                actor=request.user,
                campaign=campaign,
                action=AuditLog.Action.UPDATE,
                metadata={"survey_response_ids": updated},
            )
            return Response(success(updated_ids=updated))

        result = service.create_responses(request.user, params["client"], campaign, records, media)
        AuditLog.objects.create(
            actor=request.user,
            campaign=campaign,
            action=AuditLog.Action.UPLOAD,
            metadata={
                "survey_response_ids": result.created_ids,
                "duplicate_indices": result.duplicate_indices,
                "failed_indices": result.failed_indices,
            },
        )
        return Response(
            success(
                created_ids=result.created_ids,
                duplicate_indices=result.duplicate_indices,
                failed_indices=result.failed_indices,
                errors={str(k): v for k, v in result.errors.items()},
            ),
            status=status.HTTP_200_OK,
        )


def find_visible_response(request, campaign: Campaign, survey_response_id: str):
    """Read one response through the access-controlled path.

    Missing and invisible responses raise the same NotFound.
    """
    criteria = SurveyResponseCriteria(
        campaign_urn=campaign.urn,
        requester=request.user.get_username(),
        survey_response_ids=frozenset([survey_response_id]),
        limit=1,
    )
    service = get_survey_response_service()
    page, _ = service.read_responses(criteria, CampaignDefinition.from_campaign(campaign))
    if not page:
        raise NotFound("Unknown survey response.")
    return page[0]


class SurveyResponseDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def delete(self, request, campaign_urn: str, survey_response_id: str):
        campaign = get_campaign(campaign_urn)
        require_can_read(request.user, campaign)
        record = find_visible_response(request, campaign, survey_response_id)
        require_can_modify(request.user, campaign, record.username)

        get_survey_response_service().delete_response(record.uuid)
        AuditLog.objects.create(
            actor=request.user,
            campaign=campaign,
            action=AuditLog.Action.DELETE,
            metadata={"survey_response_ids": [record.uuid], "owner": record.username},
        )
        return Response(success())


class SurveyResponsePrivacyView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, campaign_urn: str, survey_response_id: str):
        campaign = get_campaign(campaign_urn)
        require_can_read(request.user, campaign)
        serializer = PrivacyStateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = find_visible_response(request, campaign, survey_response_id)
        require_can_modify(request.user, campaign, record.username)

        privacy_state = PrivacyState(serializer.validated_data["privacy_state"])
        get_survey_response_service().update_privacy_state([record.uuid], privacy_state)
        AuditLog.objects.create(
            actor=request.user,
            campaign=campaign,
            action=AuditLog.Action.PRIVACY_UPDATE,
            metadata={"survey_response_ids": [record.uuid], "privacy_state": privacy_state.value},
        )
        return Response(success({"privacy_state": privacy_state.value}))


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def privacy_states(request):
    states = get_survey_response_service().get_privacy_states()
    return Response(success([state.value for state in states]))


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def healthcheck(request):
    return Response({"status": "ok"})
