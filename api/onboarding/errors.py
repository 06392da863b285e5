import json
import re
from typing import Optional

GENERIC_UPSTREAM_MESSAGE = "The CRM service could not process the request."
MAX_MESSAGE_LENGTH = 200

_TAG_RE = re.compile(r"<[^>]+>")


class OnboardingError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(OnboardingError):
    status_code = 404


class Conflict(OnboardingError):
    status_code = 409


class Expired(OnboardingError):
    status_code = 410


class ValidationFailed(OnboardingError):
    status_code = 400


class UpstreamFailure(OnboardingError):
    status_code = 500


class CRMError(UpstreamFailure):
    """Failure reported by the CRM, classified once at the client boundary.

    ``code`` is one of ``not_found``, ``duplicate``, ``validation``,
    ``unavailable`` or ``upstream``.
    """

    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    UPSTREAM = "upstream"

    def __init__(self, message: str, code: str = UPSTREAM, http_status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.code = code
        self.http_status = http_status
        self.body = body

    @property
    def is_duplicate(self) -> bool:
        return self.code == self.DUPLICATE

    @property
    def is_not_found(self) -> bool:
        return self.code == self.NOT_FOUND


def _server_message(payload: dict) -> Optional[str]:
    raw = payload.get("_server_messages")
    if raw:
        try:
            messages = json.loads(raw)
            first = json.loads(messages[0]) if messages else {}
            text = first.get("message") if isinstance(first, dict) else str(first)
            if text:
                return _TAG_RE.sub("", text).strip()
        except (ValueError, TypeError, IndexError):
            pass
    for key in ("message", "exception", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def summarize_upstream_error(body: str) -> str:
    """Short user-facing message for a CRM error body; never forwards HTML or tracebacks."""
    text = (body or "").strip()
    if not text:
        return GENERIC_UPSTREAM_MESSAGE
    candidate = None
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        candidate = _server_message(payload)
    elif payload is None:
        candidate = text
    if not candidate:
        return GENERIC_UPSTREAM_MESSAGE
    lowered = candidate.lower()
    if "<html" in lowered or "<!doctype" in lowered or "traceback" in lowered:
        return GENERIC_UPSTREAM_MESSAGE
    # Frappe exceptions come as "frappe.exceptions.X: message"
    if candidate.startswith("frappe.") and ": " in candidate:
        candidate = candidate.split(": ", 1)[1]
    if len(candidate) > MAX_MESSAGE_LENGTH:
        return GENERIC_UPSTREAM_MESSAGE
    return candidate
