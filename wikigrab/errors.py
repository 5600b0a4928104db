"""
Error Taxonomy — Fatal error kinds that end a run.

Per-item problems are never raised out of a processor; they are returned
as ``ItemOutcome`` / findings (see ``wikigrab.models.outcome``). The
exceptions here are the ones the CLI turns into a non-zero exit.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GrabberError(Exception):
    """Base class for all wikigrab errors."""

    #: Whether re-running from the last cursor is expected to help.
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class TransientIOError(GrabberError):
    """Network or storage hiccup. Recover by re-running from the saved cursor."""

    retryable = True


class AuthorizationError(GrabberError):
    """The remote rejected the request (login failed, missing rights)."""


class ConfigurationError(GrabberError):
    """Invalid or missing configuration detected before or at run start."""


class MalformedResponseError(GrabberError):
    """The first page of a query had no usable result structure."""
