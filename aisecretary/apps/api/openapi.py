from __future__ import annotations

from typing import Any

from aisecretary.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _entry(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _entry("Validation error", "VALIDATION_ERROR", "title is required", {"field": "title"}),
    402: _entry(
        "Plan limit exceeded",
        "PLAN_LIMIT_EXCEEDED",
        "Plan 'free' allows at most 5 users",
        {"limit": 5, "used": 5},
    ),
    404: _entry("Not found", "NOT_FOUND", "Task not found", {"kind": "task", "id": "task_1700000000000_abc123xyz"}),
    409: _entry("Invalid transition", "INVALID_TRANSITION", "Cannot move task from completed to pending"),
    500: _entry("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    503: _entry("Store unavailable", "STORE_UNAVAILABLE", "Key-value store is unavailable"),
}
