from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    ParseError,
    PermissionDenied,
    Throttled,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class BusinessRuleViolation(APIException):
    """A request that is well formed but breaks a ledger rule.

    Raised after prior state has been loaded and before anything is written,
    so the surrounding transaction rolls back with nothing applied.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The request violates a business rule."
    default_code = "business_rule_violation"

    def __init__(self, detail=None, code=None, errors=None):
        super().__init__(detail=detail, code=code)
        self.errors = errors


class CreditLimitExceeded(BusinessRuleViolation):
    default_detail = "Customer credit limit exceeded."
    default_code = "credit_limit_exceeded"


class InsufficientStock(BusinessRuleViolation):
    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"


class ReturnExceedsBalance(BusinessRuleViolation):
    default_detail = "Return total exceeds the invoice balance due."
    default_code = "return_exceeds_balance"


class ReturnExceedsSoldQuantity(BusinessRuleViolation):
    default_detail = "Returned quantity exceeds the quantity sold on the invoice."
    default_code = "return_exceeds_sold_quantity"


class DocumentClosed(BusinessRuleViolation):
    default_detail = "Document is in a terminal status."
    default_code = "document_closed"


class DependentRecordsExist(BusinessRuleViolation):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Record is still referenced by other records."
    default_code = "dependent_records_exist"


EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    ParseError: "parse_error",
    Throttled: "throttled",
}


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(code=code, message=message, errors=errors, status_code=status_code),
        status=status_code,
    )


def _request_context(context: dict[str, Any]) -> dict[str, Any]:
    request = context.get("request")
    if request is None:
        return {}

    user = getattr(request, "user", None)
    return {
        "request_id": getattr(request, "request_id", None),
        "path": request.path,
        "method": request.method,
        "user_id": str(user.id) if user is not None and user.is_authenticated else None,
        "company_code": getattr(request, "company_code", None),
    }


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    response = drf_exception_handler(exc, context)

    if response is None:
        view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"
        logger.exception("Unhandled API exception in %s", view_name, extra=_request_context(context))
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, BusinessRuleViolation):
        logger.info(
            "business_rule_violation code=%s detail=%s",
            exc.default_code,
            exc.detail,
            extra=_request_context(context),
        )

    response.data = build_error_envelope(
        code=_build_code(exc),
        message=_build_message(exc, response.data),
        errors=_normalize_errors(exc, response.data),
        status_code=response.status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    if isinstance(exc, BusinessRuleViolation):
        return exc.default_code

    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, Throttled):
        return "Request was throttled."

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(exc: Exception, data: Any) -> Any:
    if isinstance(exc, BusinessRuleViolation):
        return exc.errors

    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
