"""Response envelope shared by every /api/v1 endpoint.

Success: ``{"success": true, "data": ..., "message": ...}``
Failure: ``{"success": false, "error": ..., "message": ..., "details": [...], "data": ...}``
Absent keys are omitted rather than sent as null.
"""

from __future__ import annotations

from typing import Any


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:  # noqa: ANN401
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body


def failure(
    error: str,
    message: str | None = None,
    details: list[dict[str, Any]] | None = None,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        body["message"] = message
    if details:
        body["details"] = details
    if data is not None:
        body["data"] = data
    return body
