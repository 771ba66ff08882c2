"""Turn raw backend error text into a readable explanation."""

from __future__ import annotations

import json
from typing import Any, Optional

ALERT_TITLE = "Failed to generate completion!"

_RETRY_MARKER = "retry in "


def _extract_json(raw: str) -> Optional[Any]:
    start = raw.find("{")
    if start < 0:
        return None
    end = raw.rfind("}")
    candidate = raw[start : end + 1] if end >= start else raw[start:]

    try:
        return json.loads(candidate)
    except ValueError:
        pass
    unescaped = candidate.replace('\\"', '"').replace("\\n", "\n")
    try:
        return json.loads(unescaped)
    except ValueError:
        return None


def _describe_status(code: Any, status: str, message: str) -> str:
    if status == "RESOURCE_EXHAUSTED":
        suggestion = ""
        position = message.find(_RETRY_MARKER)
        if position >= 0:
            suggestion = f"\n\n⏳ **Suggestion:** {message[position:]}"
        return (
            "🛑 **Quota Exhausted (429)**\n\n"
            "You've hit the Gemini API rate limit. Please wait a bit or check "
            f"your Google AI Studio quota.{suggestion}"
        )
    if status == "NOT_FOUND":
        return (
            "🚫 **Model Not Found (404)**\n\n"
            "The model you selected is either not found or not supported for "
            "this operation. Try choosing a different model.\n\n"
            f"**Details:** {message}"
        )
    if status == "PERMISSION_DENIED":
        return (
            "🔒 **Permission Denied (403)**\n\n"
            "Check your API Key and project permissions. Make sure the Key is "
            "valid for the selected region.\n\n"
            f"**Details:** {message}"
        )
    if status == "INVALID_ARGUMENT":
        return (
            "❌ **Invalid Request (400)**\n\n"
            "Something is wrong with the request parameters.\n\n"
            f"**Details:** {message}"
        )
    return f"❗ **Gemini API Error ({code})**\n\n**Status:** {status}\n**Message:** {message}"


def diagnose_error(raw: str) -> str:
    """Return user-facing text for a failed completion.

    Looks for a JSON error object embedded in *raw*, either literally or as
    an escaped string. Known statuses get a templated explanation, other
    structured payloads are pretty-printed and anything else is returned
    unchanged.
    """

    payload = _extract_json(raw)
    if payload is None:
        return raw

    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return json.dumps(payload, indent=2, ensure_ascii=False)

    code = error.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        code = 0
    status = error.get("status")
    if not isinstance(status, str):
        status = "UNKNOWN"
    message = error.get("message")
    if not isinstance(message, str):
        message = "No message"
    return _describe_status(code, status, message)


__all__ = ["ALERT_TITLE", "diagnose_error"]
