"""Rendering of contention errors at the service boundary."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from gym_floor.schemas.common import ErrorResponse
from gym_floor.services.errors import ContentionError, ErrorKind

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.RESOURCE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.QUEUE_ENTRY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RESOURCE_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ErrorKind.RESOURCE_IDLE: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_ACTIVE: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_QUEUED: status.HTTP_409_CONFLICT,
    ErrorKind.QUEUE_FULL: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# OpenAPI documentation for routers that raise ContentionError.
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in sorted(set(STATUS_BY_KIND.values()))
}


def status_for(exc: ContentionError) -> int:
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def contention_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render any ContentionError as ``{"error": {...}}``."""
    assert isinstance(exc, ContentionError)
    code = status_for(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content={"error": exc.to_payload()})
