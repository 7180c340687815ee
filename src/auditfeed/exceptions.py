"""Errors raised by auditfeed."""

from __future__ import annotations

from typing import Optional


class AuditFeedError(Exception):
    """Base class for all auditfeed errors."""


class ConfigurationError(AuditFeedError):
    """A configured value cannot be used (bad URL, missing TLS material, ...)."""


class ParseError(AuditFeedError):
    """Raw file content could not be turned into records."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class WatchError(AuditFeedError):
    """The directory watch could not be established or was lost."""
