from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.escrow.exceptions import (
    ConflictError, EscrowError, InvalidTransition, NotFoundError, UnauthorizedAction, ValidationError,
)

ESCROW_STATUS_CODES = {
    InvalidTransition: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedAction: status.HTTP_403_FORBIDDEN,
}


def escrow_status_code(exc):
    for cls in type(exc).__mro__:
        if cls in ESCROW_STATUS_CODES:
            return ESCROW_STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST


def custom_exception_handler(exc, context):
    """
    Attach status code and a machine-friendly code field to responses.
    Escrow errors are rendered from their own context.
    """
    if isinstance(exc, EscrowError):
        code = escrow_status_code(exc)
        data = exc.as_dict()
        data["status_code"] = code
        return Response(data, status=code)

    response = exception_handler(exc, context)
    if response is not None:
        if isinstance(response.data, dict):
            response.data.setdefault("status_code", response.status_code)
            if "detail" in response.data:
                response.data["error"] = str(response.data["detail"])
                response.data.setdefault("code", getattr(response.data["detail"], "code", "error"))
            else:
                response.data.setdefault("error", "Invalid payload.")
                response.data.setdefault("code", "validation_error")
    return response
