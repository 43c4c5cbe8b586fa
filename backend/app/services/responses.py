from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request

from backend.app.errors import TableVaultError


STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "ARTIFACT_MISSING": 400,
    "ARTIFACT_CORRUPT": 400,
    "PERMISSION_DENIED": 403,
    "NOT_FOUND": 404,
    "DEPENDENT_OBJECTS": 409,
    "OPERATION_IN_PROGRESS": 409,
    "TRANSPORT_ERROR": 502,
}


def request_id(request: Request) -> str:
    existing = request.headers.get("x-request-id")
    return existing if existing else str(uuid.uuid4())


def http_status_for(exc: TableVaultError) -> int:
    return STATUS_BY_CODE.get(exc.code, 500)


def success_envelope(req_id: str, data: Any) -> dict[str, Any]:
    return {
        "request_id": req_id,
        "status": "success",
        "data": data,
        "error": None,
    }


def error_envelope(
    req_id: str,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    retryable: bool = False,
) -> dict[str, Any]:
    return {
        "request_id": req_id,
        "status": "error",
        "data": None,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "retryable": retryable,
        },
    }


def table_vault_error_envelope(req_id: str, exc: TableVaultError) -> dict[str, Any]:
    return error_envelope(req_id, exc.code, exc.message, details=exc.details, retryable=exc.retryable)
