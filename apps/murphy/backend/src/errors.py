"""
Failure taxonomy for the outreach layer.

Authentication and validation failures are handled at the HTTP boundary and
never reach business logic. Configuration and provider failures propagate to
the caller of the outbound adapters. Anomalies are not errors at all; see
:class:`apps.murphy.backend.src.models.AnomalyFlag`.
"""

from __future__ import annotations

from typing import Optional


class OutreachError(Exception):
    """Base class for every failure raised by the outreach layer."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(OutreachError):
    """Bad, missing or stale credentials/signature. Always terminal."""

    status_code = 401

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class ValidationFailure(OutreachError):
    """Malformed payload, invalid enum, invalid time format."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundFailure(OutreachError):
    status_code = 404


class ConfigurationFailure(OutreachError):
    """Required provider credentials or settings are absent."""

    status_code = 500


class ProviderFailure(OutreachError):
    """A remote call/message API rejected the request or did not answer in time."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        http_status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.http_status = http_status
        self.body = (body or "")[:500]
