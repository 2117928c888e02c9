"""
DRF exception handler for the application error hierarchy.

Kept apart from core.exceptions because rest_framework.views pulls in the
authentication classes (and with them django.contrib.auth.models), which
cannot be imported while the app registry is still loading.

Configured via REST_FRAMEWORK["EXCEPTION_HANDLER"].
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from core.exceptions import BaseApplicationError, status_for_error

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


def api_exception_handler(exc: Exception, context: dict[str, Any]) -> Response | None:
    """
    Application errors become `exc.to_dict()` with the status from
    status_for_error; everything else falls through to DRF's default handler.
    """
    if isinstance(exc, BaseApplicationError):
        status_code = status_for_error(exc)
        view = context.get("view")
        log = logger.error if status_code >= 500 else logger.info
        log(
            f"API error: {exc.error_code}",
            extra={
                "error_code": exc.error_code,
                "status_code": status_code,
                "view": view.__class__.__name__ if view else None,
            },
        )
        return Response(exc.to_dict(), status=status_code)

    return drf_exception_handler(exc, context)
