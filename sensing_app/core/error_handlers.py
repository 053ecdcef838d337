"""Map service and data-access errors onto API responses."""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .exceptions import (
    DataAccessError,
    ErrorCode,
    InsufficientPermission,
    NotFound,
    ServiceError,
)

logger = logging.getLogger(__name__)


def failure_body(code: str, text: str) -> dict:
    return {"result": "failure", "errors": [{"code": str(code), "text": text}]}


def api_exception_handler(exc, context):
    """DRF exception handler understanding ServiceError and DataAccessError.

    Anything else falls through to DRF's default handling, which still covers
    authentication failures, throttling and Django's PermissionDenied / Http404.
    """
    if isinstance(exc, DataAccessError):
        view = context.get("view")
        logger.error(
            f"Data access failure in {view.__class__.__name__ if view else 'unknown view'}: {exc}"
        )
        return Response(
            failure_body(exc.code, "Internal error."),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, ServiceError):
        if isinstance(exc, InsufficientPermission):
            status_code = status.HTTP_403_FORBIDDEN
        elif isinstance(exc, NotFound):
            status_code = status.HTTP_404_NOT_FOUND
        else:
            status_code = status.HTTP_400_BAD_REQUEST
        return Response(failure_body(exc.code, exc.message), status=status_code)

    response = exception_handler(exc, context)
    if response is not None and response.status_code == status.HTTP_403_FORBIDDEN:
        detail = response.data.get("detail", "") if isinstance(response.data, dict) else ""
        response.data = failure_body(ErrorCode.INSUFFICIENT_PERMISSION, str(detail))
    return response
