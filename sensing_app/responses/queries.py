"""
Survey-response data access.

Reads are assembled from parameterised fragments into one SQL statement and
executed on a raw cursor. The statement takes one of three shapes:

- ``INDIVIDUAL``: one row per prompt response with the survey-response columns
  repeated, folded back into responses by the reducer.
- ``SURVEY_AGGREGATE``: grouped on survey-level columns only; the count is the
  number of distinct survey responses in each group.
- ``PROMPT_AGGREGATE``: grouped on at least one prompt-level column; the count
  is the number of prompt responses in each group.

Aggregated rows carry representative (``MIN``) survey columns so the same
statement runs on SQLite and PostgreSQL.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any

from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, connections, transaction

from sensing_app.campaigns.definitions import (
    CampaignDefinition,
    DefinitionError,
    PromptType,
)
from sensing_app.campaigns.models import Campaign
from sensing_app.core.db import dictfetch, run_in_transaction
from sensing_app.core.exceptions import DataAccessError, ErrorCode, ServiceError

from .access import AccessControlResolver, RoleDirectory
from .criteria import ColumnKey, SortParameter, SurveyResponseCriteria
from .domain import Location, PrivacyState, PromptAnswer, SurveyResponseRecord
from .models import Media, PromptResponse, SurveyResponse
from .reducer import by_uuid, every_row, group_consecutive, reduce_rows
from .sql import SqlFragment, join

logger = logging.getLogger(__name__)

User = get_user_model()


class RowShape(Enum):
    INDIVIDUAL = "individual"
    SURVEY_AGGREGATE = "survey_aggregate"
    PROMPT_AGGREGATE = "prompt_aggregate"


class DuplicateSurveyResponse(ServiceError):
    default_code = ErrorCode.DUPLICATE_SURVEY_RESPONSE


SURVEY_COLUMNS = (
    ("sr.uuid", "uuid"),
    ("u.username", "username"),
    ("c.urn", "campaign_urn"),
    ("sr.client", "client"),
    ("sr.epoch_millis", "epoch_millis"),
    ("sr.phone_timezone", "phone_timezone"),
    ("sr.survey_id", "survey_id"),
    ("sr.launch_context", "launch_context"),
    ("sr.location_status", "location_status"),
    ("sr.location", "location"),
    ("sr.privacy_state", "privacy_state"),
)

PROMPT_COLUMNS = (
    ("pr.id", "prompt_response_id"),
    ("pr.prompt_id", "prompt_id"),
    ("pr.prompt_type", "prompt_type"),
    ("pr.repeatable_set_id", "repeatable_set_id"),
    ("pr.repeatable_set_iteration", "repeatable_set_iteration"),
    ("pr.response", "response"),
)

# (label, expression) pairs per aggregation column and whether any of them
# lives on prompt_response. None marks columns that would need JSON
# decomposition in the database; they are dropped from GROUP BY.
GROUP_EXPRESSIONS: dict[ColumnKey, tuple[tuple[tuple[str, str], ...], bool] | None] = {
    ColumnKey.CONTEXT_CLIENT: ((("value", "sr.client"),), False),
    # UTC day number
    ColumnKey.CONTEXT_DATE: ((("value", "sr.epoch_millis / 86400000"),), False),
    ColumnKey.CONTEXT_TIMESTAMP: ((("value", "sr.epoch_millis / 1000"),), False),
    ColumnKey.CONTEXT_UTC_TIMESTAMP: ((("value", "sr.epoch_millis / 1000"),), False),
    ColumnKey.CONTEXT_EPOCH_MILLIS: ((("value", "sr.epoch_millis"),), False),
    ColumnKey.CONTEXT_TIMEZONE: ((("value", "sr.phone_timezone"),), False),
    ColumnKey.CONTEXT_LAUNCH_CONTEXT_LONG: ((("value", "sr.launch_context"),), False),
    ColumnKey.CONTEXT_LAUNCH_CONTEXT_SHORT: ((("value", "sr.launch_context"),), False),
    ColumnKey.CONTEXT_LOCATION_STATUS: ((("value", "sr.location_status"),), False),
    ColumnKey.CONTEXT_LOCATION_LATITUDE: None,
    ColumnKey.CONTEXT_LOCATION_LONGITUDE: None,
    ColumnKey.CONTEXT_LOCATION_TIMESTAMP: None,
    ColumnKey.CONTEXT_LOCATION_TIMEZONE: None,
    ColumnKey.CONTEXT_LOCATION_ACCURACY: None,
    ColumnKey.CONTEXT_LOCATION_PROVIDER: None,
    ColumnKey.USER_ID: ((("value", "u.username"),), False),
    ColumnKey.SURVEY_ID: ((("value", "sr.survey_id"),), False),
    ColumnKey.SURVEY_TITLE: None,
    ColumnKey.SURVEY_DESCRIPTION: None,
    ColumnKey.SURVEY_RESPONSE_ID: ((("value", "sr.uuid"),), False),
    ColumnKey.SURVEY_PRIVACY_STATE: ((("value", "sr.privacy_state"),), False),
    ColumnKey.REPEATABLE_SET_ID: ((("value", "pr.repeatable_set_id"),), True),
    ColumnKey.REPEATABLE_SET_ITERATION: ((("value", "pr.repeatable_set_iteration"),), True),
    ColumnKey.PROMPT_RESPONSE: (
        (("prompt_id", "pr.prompt_id"), ("response", "pr.response")),
        True,
    ),
}

SORT_ALIASES = {
    SortParameter.USER: "username",
    SortParameter.TIMESTAMP: "epoch_millis",
    SortParameter.SURVEY: "survey_id",
}

DEFAULT_ORDER = "epoch_millis DESC, uuid"
TIE_BREAK = "uuid"


@dataclass(frozen=True)
class GroupColumn:
    key: ColumnKey
    label: str
    expression: str
    alias: str


@dataclass(frozen=True)
class BuiltQuery:
    sql: str
    params: tuple[Any, ...]
    shape: RowShape
    group_columns: tuple[GroupColumn, ...] = ()

    def aggregate_values(self, row: dict) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for column in self.group_columns:
            if column.label == "value":
                values[column.key.value] = row[column.alias]
            else:
                values.setdefault(column.key.value, {})[column.label] = row[column.alias]
        return values


def _escape_like(token: str) -> str:
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _table(model) -> str:
    return connections["default"].ops.quote_name(model._meta.db_table)


def _filters(criteria: SurveyResponseCriteria) -> list[SqlFragment]:
    fragments: list[SqlFragment] = []
    if criteria.survey_response_ids is not None:
        fragments.append(SqlFragment.in_list("sr.uuid", criteria.survey_response_ids))
    if criteria.usernames:
        fragments.append(SqlFragment.in_list("u.username", criteria.usernames))
    if criteria.start_date is not None:
        fragments.append(SqlFragment("sr.epoch_millis >= %s", (criteria.start_date,)))
    if criteria.end_date is not None:
        fragments.append(SqlFragment("sr.epoch_millis <= %s", (criteria.end_date,)))
    if criteria.privacy_state is not None:
        fragments.append(SqlFragment("sr.privacy_state = %s", (criteria.privacy_state.value,)))
    if criteria.survey_ids is not None:
        fragments.append(SqlFragment.in_list("sr.survey_id", criteria.survey_ids))
    if criteria.prompt_ids is not None:
        fragments.append(SqlFragment.in_list("pr.prompt_id", criteria.prompt_ids))
    if criteria.prompt_type is not None:
        fragments.append(SqlFragment("pr.prompt_type = %s", (criteria.prompt_type.value,)))
    for token in criteria.search_tokens or ():
        fragments.append(
            SqlFragment("pr.response LIKE %s ESCAPE '\\'", (f"%{_escape_like(token)}%",))
        )
    return fragments


def _needs_prompt_join(criteria: SurveyResponseCriteria) -> bool:
    return bool(
        criteria.prompt_ids is not None
        or criteria.prompt_type is not None
        or criteria.search_tokens
    )


def _group_columns(columns: tuple[ColumnKey, ...]) -> tuple[tuple[GroupColumn, ...], bool]:
    """Translate aggregation columns; returns them and whether any is prompt-level."""
    group_columns: list[GroupColumn] = []
    prompt_level = False
    for key in columns:
        entry = GROUP_EXPRESSIONS[key]
        if entry is None:
            logger.warning(f"Aggregation on {key.value} is not supported; column dropped")
            continue
        expressions, on_prompt = entry
        prompt_level = prompt_level or on_prompt
        for label, expression in expressions:
            alias = f"group_{len(group_columns)}"
            group_columns.append(GroupColumn(key, label, expression, alias))
    return tuple(group_columns), prompt_level


def _order_by(criteria: SurveyResponseCriteria, shape: RowShape) -> str:
    if criteria.sort_order is None:
        order = DEFAULT_ORDER
    else:
        aliases = [SORT_ALIASES[p] for p in criteria.sort_order]
        if TIE_BREAK not in aliases:
            aliases.append(TIE_BREAK)
        order = ", ".join(aliases)
    if shape is RowShape.INDIVIDUAL:
        # Prompt rows inside a response in insertion order
        order += ", prompt_response_id"
    return f"ORDER BY {order}"


def build_query(
    criteria: SurveyResponseCriteria, visibility: SqlFragment | None
) -> BuiltQuery | None:
    """Compose criteria and a visibility predicate into one statement.

    Returns None when the criteria can match nothing.
    """
    if criteria.is_short_circuited():
        return None

    group_columns: tuple[GroupColumn, ...] = ()
    if criteria.columns is None:
        shape = RowShape.INDIVIDUAL
    else:
        group_columns, prompt_level = _group_columns(criteria.columns)
        shape = RowShape.PROMPT_AGGREGATE if prompt_level else RowShape.SURVEY_AGGREGATE

    if shape is RowShape.INDIVIDUAL:
        select_list = [f"{expr} AS {alias}" for expr, alias in SURVEY_COLUMNS + PROMPT_COLUMNS]
    else:
        count = "COUNT(pr.id)" if shape is RowShape.PROMPT_AGGREGATE else "COUNT(DISTINCT sr.id)"
        select_list = [f"{count} AS response_count"]
        select_list += [f"MIN({expr}) AS {alias}" for expr, alias in SURVEY_COLUMNS]
        select_list += [f"{col.expression} AS {col.alias}" for col in group_columns]

    join_prompts = shape is not RowShape.SURVEY_AGGREGATE or _needs_prompt_join(criteria)

    from_clause = (
        f"FROM {_table(SurveyResponse)} sr "
        f"JOIN {_table(Campaign)} c ON c.id = sr.campaign_id "
        f"JOIN {_table(User)} u ON u.id = sr.user_id"
    )
    if join_prompts:
        from_clause += f" LEFT JOIN {_table(PromptResponse)} pr ON pr.survey_response_id = sr.id"

    conditions = [SqlFragment("c.urn = %s", (criteria.campaign_urn,))]
    if visibility is not None:
        conditions.append(visibility)
    conditions.extend(_filters(criteria))

    parts = [
        SqlFragment("SELECT " + ", ".join(select_list)),
        SqlFragment(from_clause),
        join(conditions, " AND ").wrap("WHERE "),
    ]
    if group_columns:
        parts.append(SqlFragment("GROUP BY " + ", ".join(col.expression for col in group_columns)))
    parts.append(SqlFragment(_order_by(criteria, shape)))

    statement = join(parts)
    return BuiltQuery(statement.sql, statement.params, shape, group_columns)


class SurveyResponseQueries:
    """Data-access object for survey and prompt responses."""

    def __init__(self, role_directory: RoleDirectory, using: str = "default"):
        self.role_directory = role_directory
        self.using = using

    def new_resolver(self) -> AccessControlResolver:
        return AccessControlResolver(self.role_directory)

    # -------------------- Reads --------------------

    def retrieve_survey_responses(
        self,
        criteria: SurveyResponseCriteria,
        definition: CampaignDefinition,
        resolver: AccessControlResolver | None = None,
    ) -> tuple[list[SurveyResponseRecord], int]:
        """Return one page of visible survey responses and the total match count."""
        if criteria.is_short_circuited():
            logger.debug(f"Empty filter collection for {criteria.campaign_urn}; skipping query")
            return [], 0

        resolver = resolver or self.new_resolver()
        query = build_query(
            criteria, resolver.resolve(criteria.requester, criteria.campaign_urn)
        )
        build = partial(self._build_record, definition, query)

        try:
            with connections[self.using].cursor() as cursor:
                cursor.execute(query.sql, list(query.params))
                rows = dictfetch(cursor)
                if query.shape is RowShape.INDIVIDUAL:
                    groups = group_consecutive(rows, by_uuid)
                else:
                    # A grand total over nothing still yields one all-NULL row
                    groups = every_row(row for row in rows if row["response_count"])
                return reduce_rows(groups, criteria.skip, criteria.limit, build)
        except DatabaseError as exc:
            logger.exception("Survey response read failed")
            raise DataAccessError(
                f"Error executing SQL '{query.sql}' with parameters: {list(query.params)}"
            ) from exc

    def _build_record(
        self, definition: CampaignDefinition, query: BuiltQuery, rows: list[dict]
    ) -> SurveyResponseRecord:
        first = rows[0]
        try:
            survey = definition.get_survey(first["survey_id"])
            location = json.loads(first["location"]) if first["location"] else None
            record = SurveyResponseRecord(
                uuid=first["uuid"],
                username=first["username"],
                campaign_urn=first["campaign_urn"],
                client=first["client"],
                epoch_millis=int(first["epoch_millis"]),
                timezone=first["phone_timezone"],
                survey=survey,
                location_status=first["location_status"],
                location=Location.from_json(location) if location else None,
                launch_context=json.loads(first["launch_context"] or "{}"),
                privacy_state=PrivacyState(first["privacy_state"]),
            )
            if query.shape is RowShape.INDIVIDUAL:
                for row in rows:
                    if row["prompt_id"] is None:
                        continue
                    prompt = survey.get_prompt(row["prompt_id"])
                    if row["prompt_type"] != prompt.type.value:
                        raise DefinitionError(
                            f"Prompt '{prompt.id}' is stored as {row['prompt_type']} "
                            f"but defined as {prompt.type.value}."
                        )
                    record.add_answer(
                        PromptAnswer(
                            prompt=prompt,
                            value=prompt.parse_stored(row["response"]),
                            repeatable_set_iteration=row["repeatable_set_iteration"],
                        )
                    )
            else:
                record.count = int(first["response_count"])
                record.aggregate_values = query.aggregate_values(first)
        except (DefinitionError, ValueError, KeyError) as exc:
            raise DataAccessError(
                f"Survey response {first['uuid']} cannot be read against campaign "
                f"'{definition.urn}': {exc}"
            ) from exc
        return record

    def retrieve_privacy_states(self) -> list[PrivacyState]:
        return list(PrivacyState)

    def get_campaign_urn_for_survey_response(self, survey_response_id: str) -> str | None:
        try:
            return (
                SurveyResponse.objects.using(self.using)
                .filter(uuid=survey_response_id)
                .values_list("campaign__urn", flat=True)
                .first()
            )
        except DatabaseError as exc:
            raise DataAccessError("Error looking up the campaign of a survey response.") from exc

    def get_existing_ids(self, survey_response_ids) -> set[str]:
        try:
            return set(
                SurveyResponse.objects.using(self.using)
                .filter(uuid__in=list(survey_response_ids))
                .values_list("uuid", flat=True)
            )
        except DatabaseError as exc:
            raise DataAccessError("Error checking for existing survey responses.") from exc

    def get_media_ids(self, survey_response_id: str) -> list[str]:
        """Media attached to a response, by link or by prompt answer."""
        media_types = [t.value for t in PromptType if t.is_media]
        try:
            linked = set(
                Media.objects.using(self.using)
                .filter(survey_response__uuid=survey_response_id)
                .values_list("uuid", flat=True)
            )
            answered = set(
                PromptResponse.objects.using(self.using)
                .filter(
                    survey_response__uuid=survey_response_id,
                    prompt_type__in=media_types,
                )
                .values_list("response", flat=True)
            )
        except DatabaseError as exc:
            raise DataAccessError("Error retrieving media for a survey response.") from exc
        return sorted(linked | {a for a in answered if a not in ("SKIPPED", "NOT_DISPLAYED")})

    # -------------------- Writes --------------------

    def _prompt_rows(self, survey_response: SurveyResponse, record: SurveyResponseRecord):
        return [
            PromptResponse(
                survey_response=survey_response,
                prompt_id=answer.prompt.id,
                prompt_type=answer.prompt.type.value,
                repeatable_set_id=answer.prompt.repeatable_set_id,
                repeatable_set_iteration=answer.repeatable_set_iteration,
                response=answer.prompt.to_stored(answer.value),
            )
            for answer in record.answers.values()
        ]

    def insert_survey_response(
        self, owner, client: str, campaign: Campaign, record: SurveyResponseRecord
    ) -> SurveyResponse:
        """Insert one response with its prompt rows.

        Raises DuplicateSurveyResponse when the UUID is already stored.
        """
        try:
            with transaction.atomic(using=self.using):
                survey_response = SurveyResponse.objects.using(self.using).create(
                    uuid=record.uuid,
                    user=owner,
                    campaign=campaign,
                    client=client,
                    epoch_millis=record.epoch_millis,
                    phone_timezone=record.timezone,
                    survey_id=record.survey.id,
                    launch_context=json.dumps(record.launch_context),
                    location_status=record.location_status,
                    location=json.dumps(record.location.to_json()) if record.location else None,
                    privacy_state=record.privacy_state.value,
                )
                PromptResponse.objects.using(self.using).bulk_create(
                    self._prompt_rows(survey_response, record)
                )
        except IntegrityError as exc:
            raise DuplicateSurveyResponse(
                f"Survey response {record.uuid} already exists."
            ) from exc
        except DatabaseError as exc:
            logger.exception(f"Insert of survey response {record.uuid} failed")
            raise DataAccessError("Error inserting a survey response.") from exc
        return survey_response

    def update_survey_response(self, client: str, record: SurveyResponseRecord) -> SurveyResponse:
        """Rewrite a stored response and replace its prompt rows.

        Callers wrap a batch of these in ``run_in_transaction``.
        """
        survey_response = SurveyResponse.objects.using(self.using).get(uuid=record.uuid)
        survey_response.client = client
        survey_response.epoch_millis = record.epoch_millis
        survey_response.phone_timezone = record.timezone
        survey_response.launch_context = json.dumps(record.launch_context)
        survey_response.location_status = record.location_status
        survey_response.location = (
            json.dumps(record.location.to_json()) if record.location else None
        )
        survey_response.privacy_state = record.privacy_state.value
        survey_response.save(using=self.using)
        PromptResponse.objects.using(self.using).filter(survey_response=survey_response).delete()
        PromptResponse.objects.using(self.using).bulk_create(
            self._prompt_rows(survey_response, record)
        )
        return survey_response

    def update_privacy_state(self, survey_response_ids, privacy_state: PrivacyState) -> int:
        with run_in_transaction("updating survey response privacy state", using=self.using):
            return (
                SurveyResponse.objects.using(self.using)
                .filter(uuid__in=list(survey_response_ids))
                .update(privacy_state=privacy_state.value)
            )

    def delete_survey_response(self, survey_response_id: str) -> None:
        with run_in_transaction("deleting a survey response", using=self.using):
            SurveyResponse.objects.using(self.using).filter(uuid=survey_response_id).delete()
