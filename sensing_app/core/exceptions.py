"""
Error taxonomy shared by the campaign and survey-response layers.

Service errors carry a machine-readable code and a message that is safe to
show to the caller. Data-access errors wrap failures of the relational store
and are reported to API clients as an opaque internal error.
"""

from __future__ import annotations

from django.db import models


class ErrorCode(models.TextChoices):
    INVALID_PARAMETER = "invalid_parameter", "Invalid parameter"
    INVALID_SURVEY_RESPONSE = "invalid_survey_response", "Invalid survey response"
    UNKNOWN_CAMPAIGN = "unknown_campaign", "Unknown campaign"
    UNKNOWN_SURVEY = "unknown_survey", "Unknown survey"
    UNKNOWN_PROMPT = "unknown_prompt", "Unknown prompt"
    INVALID_PROMPT_VALUE = "invalid_prompt_value", "Invalid prompt value"
    INVALID_CAMPAIGN_DEFINITION = "invalid_campaign_definition", "Invalid campaign definition"
    DUPLICATE_SURVEY_RESPONSE = "duplicate_survey_response", "Duplicate survey response"
    SURVEY_CHANGED = "survey_changed", "Survey identity changed"
    INVALID_MEDIA = "invalid_media", "Invalid media"
    MISSING_MEDIA = "missing_media", "Missing media"
    MEDIA_TOO_LARGE = "media_too_large", "Media too large"
    CAMPAIGN_NOT_RUNNING = "campaign_not_running", "Campaign not running"
    CAMPAIGN_NOT_EDITABLE = "campaign_not_editable", "Campaign does not allow edits"
    CAMPAIGN_OUT_OF_DATE = "campaign_out_of_date", "Campaign out of date"
    INSUFFICIENT_PERMISSION = "insufficient_permission", "Insufficient permission"
    NOT_FOUND = "not_found", "Not found"
    INTERNAL_ERROR = "internal_error", "Internal error"
    TRANSACTION_ERROR = "transaction_error", "Transaction error"


class ServiceError(Exception):
    """A business-rule violation reported to the caller with a code."""

    default_code = ErrorCode.INVALID_PARAMETER

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationFailure(ServiceError):
    """Malformed payload, bad filter combination or unknown reference."""

    default_code = ErrorCode.INVALID_PARAMETER


class InsufficientPermission(ServiceError):
    default_code = ErrorCode.INSUFFICIENT_PERMISSION


class NotFound(ServiceError):
    default_code = ErrorCode.NOT_FOUND


class DataAccessError(Exception):
    """Raised when the relational store fails; never shown verbatim to clients."""

    code = ErrorCode.INTERNAL_ERROR


class TransactionError(DataAccessError):
    """Raised when rolling back a failed transaction itself fails."""

    code = ErrorCode.TRANSACTION_ERROR
