"""
Open mHealth compatible read endpoints.

Every survey of every campaign a user belongs to is exposed as a schema
``omh:<namespace>:survey:<survey_id>`` whose versions are the survey versions
those campaigns define. Data reads return only the requesting user's own
responses. Lists are paged with ``num_to_skip`` / ``num_to_return`` and
described by ``Count``, ``Next`` and ``Previous`` headers.
"""

from __future__ import annotations

import datetime
import zoneinfo

from django.conf import settings
from rest_framework import permissions
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from sensing_app.campaigns.definitions import CampaignDefinition, DefinitionError
from sensing_app.campaigns.models import Campaign
from sensing_app.campaigns.permissions import require_can_read
from sensing_app.core.exceptions import ErrorCode, NotFound, ValidationFailure
from sensing_app.responses.criteria import SurveyResponseCriteria
from sensing_app.responses.domain import SurveyResponseRecord
from sensing_app.responses.services import get_survey_response_service

from .params import date_param, int_param, page_limit
from .views import get_campaign


def schema_id_for(survey_id: str) -> str:
    return f"omh:{settings.OMH_SCHEMA_NAMESPACE}:survey:{survey_id}"


def survey_id_from_schema(schema_id: str) -> str:
    parts = schema_id.split(":", 3)
    if (
        len(parts) != 4
        or parts[0] != "omh"
        or parts[1] != settings.OMH_SCHEMA_NAMESPACE
        or parts[2] != "survey"
        or not parts[3]
    ):
        raise NotFound(f"Unknown schema {schema_id!r}.")
    return parts[3]


def paging_headers(request, response: Response, total: int, skip: int, limit: int | None) -> None:
    response["Count"] = str(total)
    if limit is None:
        return
    if skip + limit < total:
        params = request.query_params.copy()
        params["num_to_skip"] = str(skip + limit)
        params["num_to_return"] = str(limit)
        response["Next"] = request.build_absolute_uri(f"{request.path}?{params.urlencode()}")
    if skip > 0:
        params = request.query_params.copy()
        params["num_to_skip"] = str(max(0, skip - limit))
        params["num_to_return"] = str(limit)
        response["Previous"] = request.build_absolute_uri(f"{request.path}?{params.urlencode()}")


def to_data_point(record: SurveyResponseRecord) -> dict:
    try:
        tz = zoneinfo.ZoneInfo(record.timezone)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        tz = datetime.timezone.utc
    timestamp = datetime.datetime.fromtimestamp(record.epoch_millis / 1000, tz)

    data: dict = {}
    for answer in record.answers.values():
        value = answer.value.value if answer.is_no_response else answer.value
        set_id = answer.prompt.repeatable_set_id
        if set_id is None:
            data[answer.prompt.id] = value
            continue
        iterations = data.setdefault(set_id, [])
        while len(iterations) <= answer.repeatable_set_iteration:
            iterations.append({})
        iterations[answer.repeatable_set_iteration][answer.prompt.id] = value

    return {
        "metadata": {
            "id": record.uuid,
            "timestamp": timestamp.isoformat(),
            "location": record.location.to_json() if record.location else None,
        },
        "data": data,
    }


def visible_campaigns(user):
    campaigns = Campaign.objects.all()
    if not user.is_superuser:
        campaigns = campaigns.filter(memberships__user=user).distinct()
    return campaigns


def _visible_surveys(request, survey_id: str, campaign_urn: str | None = None):
    """Yield (campaign, survey) for each readable campaign defining ``survey_id``."""
    if campaign_urn:
        campaign = get_campaign(campaign_urn)
        require_can_read(request.user, campaign)
        campaigns = [campaign]
    else:
        campaigns = visible_campaigns(request.user)
    for campaign in campaigns:
        survey = CampaignDefinition.from_campaign(campaign).surveys.get(survey_id)
        if survey is not None:
            yield campaign, survey


def _page(request, items: list) -> Response:
    skip = int_param(request.query_params, "num_to_skip", default=0)
    limit = int_param(request.query_params, "num_to_return")
    end = None if limit is None else skip + limit
    response = Response(items[skip:end])
    paging_headers(request, response, len(items), skip, limit)
    return response


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def schema_list(request):
    schema_ids = sorted(
        {
            schema_id_for(survey_id)
            for campaign in visible_campaigns(request.user)
            for survey_id in CampaignDefinition.from_campaign(campaign).surveys
        }
    )
    return _page(request, schema_ids)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def schema_versions(request, schema_id: str):
    survey_id = survey_id_from_schema(schema_id)
    versions = sorted({survey.version for _, survey in _visible_surveys(request, survey_id)})
    if not versions:
        raise NotFound(f"Unknown schema {schema_id!r}.", ErrorCode.UNKNOWN_SURVEY)
    return _page(request, versions)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def schema_definition(request, schema_id: str, version: int):
    """The survey definition behind a schema version.

    ``campaign_urn`` picks the campaign when several define the same survey;
    otherwise the first readable campaign by URN is used.
    """
    survey_id = survey_id_from_schema(schema_id)
    campaign_urn = request.query_params.get("campaign_urn")
    for campaign, survey in _visible_surveys(request, survey_id, campaign_urn):
        if survey.version == version:
            return Response(
                {
                    "schema_id": schema_id,
                    "schema_version": version,
                    "campaign_urn": campaign.urn,
                    "definition": survey.to_json(),
                }
            )
    raise NotFound(f"Unknown schema {schema_id!r} version {version}.", ErrorCode.UNKNOWN_SURVEY)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def schema_data(request, schema_id: str, version: int):
    survey_id = survey_id_from_schema(schema_id)
    campaign_urn = request.query_params.get("campaign_urn")
    if not campaign_urn:
        raise ValidationFailure("campaign_urn is required.")
    campaign = get_campaign(campaign_urn)
    require_can_read(request.user, campaign)

    definition = CampaignDefinition.from_campaign(campaign)
    try:
        survey = definition.get_survey(survey_id)
    except DefinitionError:
        raise NotFound(f"Unknown schema {schema_id!r}.", ErrorCode.UNKNOWN_SURVEY) from None
    if survey.version != version:
        raise NotFound(
            f"Campaign {campaign.urn} has no version {version} of {schema_id!r}.",
            ErrorCode.UNKNOWN_SURVEY,
        )

    username = request.user.get_username()
    skip = int_param(request.query_params, "num_to_skip", default=0)
    limit = page_limit(
        int_param(request.query_params, "num_to_return", default=settings.OMH_DEFAULT_PAGE_SIZE)
    )
    criteria = SurveyResponseCriteria(
        campaign_urn=campaign.urn,
        requester=username,
        usernames=frozenset([username]),
        survey_ids=frozenset([survey_id]),
        start_date=date_param(request.query_params, "t_start"),
        end_date=date_param(request.query_params, "t_end"),
        skip=skip,
        limit=limit,
    )
    page, total = get_survey_response_service().read_responses(criteria, definition)

    response = Response([to_data_point(record) for record in page])
    paging_headers(request, response, total, skip, limit)
    return response
