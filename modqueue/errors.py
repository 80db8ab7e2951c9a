"""Error taxonomy for the moderation engine.

Every engine failure is a :class:`ModerationError` subclass carrying a short,
human-readable message plus a machine ``code`` and the HTTP status the web
layer should answer with.
"""

from __future__ import annotations

from typing import Any, Optional


class ModerationError(Exception):
    """Base class for all engine errors."""

    code = "moderation_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class Forbidden(ModerationError):
    """Caller has no valid session or lacks the required role."""

    code = "forbidden"
    status_code = 403


class NotFound(ModerationError):
    code = "not_found"
    status_code = 404


class ValidationError(ModerationError):
    """Missing or malformed input; the caller can correct and resend."""

    code = "validation_error"
    status_code = 400


class InvalidTransition(ModerationError):
    code = "invalid_transition"
    status_code = 409


class Conflict(ModerationError):
    """A concurrent mutation committed first; re-read and retry."""

    code = "conflict"
    status_code = 409


class TransientError(ModerationError):
    """A downstream call failed or timed out. The engine never retries."""

    code = "transient_error"
    status_code = 503


class PartialBulkFailure(ModerationError):
    """One or more subjects in a bulk call could not be updated.

    Everything applied during the call has been rolled back, except the
    subjects listed in ``unrestored_subjects`` whose restore also failed.
    ``flag_ids``, ``report_ids`` and ``clip_ids`` echo the request unmodified
    so the caller can retry with full context.
    """

    code = "partial_bulk_failure"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        failed_subjects: list[str],
        flag_ids: list[str],
        report_ids: list[str],
        clip_ids: list[str],
        unrestored_subjects: Optional[list[str]] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "failed_subjects": list(failed_subjects),
                "flag_ids": list(flag_ids),
                "report_ids": list(report_ids),
                "clip_ids": list(clip_ids),
                "unrestored_subjects": list(unrestored_subjects or []),
            },
        )
        self.failed_subjects = list(failed_subjects)
        self.unrestored_subjects = list(unrestored_subjects or [])
        self.flag_ids = list(flag_ids)
        self.report_ids = list(report_ids)
        self.clip_ids = list(clip_ids)
