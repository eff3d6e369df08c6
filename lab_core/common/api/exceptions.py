# lab_core/common/api/exceptions.py

from __future__ import annotations

import uuid
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope for lab engine errors.
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


# -------------------------------------------------------------------
# Domain errors
# Services raise these directly; an outer DRF layer renders them through
# api_exception_handler below.
# -------------------------------------------------------------------

class LabError(APIException):
    """
    Base class for lab workflow errors. `details` is rendered into the envelope.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Lab workflow error."
    default_code = "lab_error"

    def __init__(self, detail=None, code=None, details: dict | None = None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)
        self.details = details or None


class NotFound(LabError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"

    def __init__(self, entity: str, identifier: Any = None):
        msg = f"{entity} not found" if identifier is None else f"{entity} not found: {identifier}"
        super().__init__(detail=msg, details={"entity": entity, "id": None if identifier is None else str(identifier)})
        self.entity = entity


class ConflictError(LabError):
    """
    409 Conflict that still flows through the global exception handler.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"


class InvalidTransition(ConflictError):
    """
    A state-machine edge that is not in the entity's transition table.
    """
    default_detail = "Invalid state transition."
    default_code = "invalid_transition"

    def __init__(self, entity: str, current_state: str, attempted_state: str, detail: str | None = None):
        msg = detail or f"Cannot transition {entity} from {current_state} to {attempted_state}"
        super().__init__(
            detail=msg,
            details={"entity": entity, "current_state": current_state, "attempted_state": attempted_state},
        )
        self.entity = entity
        self.current_state = current_state
        self.attempted_state = attempted_state


class DuplicateKey(ConflictError):
    default_detail = "Duplicate key."
    default_code = "duplicate_key"


class PreconditionFailed(LabError):
    """
    Entity is in a valid state but a business precondition is unmet.
    """
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Precondition failed."
    default_code = "precondition_failed"


def _code_for(exc: Exception, http_status: int) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotAuthenticated):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, Http404):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")
    response = drf_exception_handler(exc, context)

    if response is None:
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)
    data = response.data

    # Lab errors carry structured details (states, entity ids)
    if isinstance(exc, LabError):
        message = str(exc.detail)
        details = exc.details
    elif isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: v for k, v in data.items() if k != "detail"}
        details = rest or None
    else:
        message = "Request failed."
        details = data

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
