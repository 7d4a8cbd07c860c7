import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .exceptions import GuardViolation

logger = logging.getLogger(__name__)


def _first_message(detail):
    """Dig the first human readable string out of a DRF error structure."""
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_message(value)
            if message:
                return message if key == "non_field_errors" else f"{key}: {message}"
        return ""
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else ""
    return str(detail)


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    view = context.get("view")

    if response is None:
        logger.exception("Unhandled error in %s", type(view).__name__ if view else "api")
        body = {"message": "Internal server error"}
        if settings.DEBUG:
            body["error"] = str(exc)
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, ValidationError):
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        response.data = {"message": _first_message(exc.detail), "errors": exc.detail}
    elif isinstance(exc, GuardViolation):
        logger.info("Guard refused %s: %s", type(exc).__name__, exc.detail)
        response.data = {"message": str(exc.detail), **exc.extra}
    else:
        detail = response.data.get("detail") if isinstance(response.data, dict) else response.data
        response.data = {"message": _first_message(detail)}
    return response
