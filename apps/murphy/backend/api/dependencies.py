"""
Request dependencies shared by the v1 endpoints.

Services come from ``app.state.services`` (see ``main.lifespan``). Caller
identity is resolved by an :class:`IdentityProvider`; the default reads the
identifiers already authenticated by the upstream identity layer from request
headers.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import Depends, Header, Request

from apps.murphy.backend.src.container import OutreachServices
from apps.murphy.backend.src.errors import AuthenticationFailure, NotFoundFailure
from apps.murphy.backend.src.stores.base import PatientDirectory
from utils.ml_logging import get_logger

logger = get_logger("api.dependencies")


def get_services(request: Request) -> OutreachServices:
    return request.app.state.services


# ═══════════════════════════════════════════════════════════════════════════════
# CALLER IDENTITY
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CallerIdentity:
    patient_id: Optional[str] = None
    coadmin_id: Optional[str] = None

    @property
    def caller_id(self) -> str:
        return self.patient_id or self.coadmin_id or ""

    def can_manage(self, patient_id: str, patients: PatientDirectory) -> bool:
        if self.patient_id and self.patient_id == patient_id:
            return True
        return bool(self.coadmin_id) and patients.is_coadmin(self.coadmin_id, patient_id)


class IdentityProvider(Protocol):
    def __call__(self, request: Request) -> CallerIdentity: ...


class HeaderIdentityProvider:
    """Trusts ``X-Patient-Id`` / ``X-Coadmin-Id`` set by the authenticating proxy."""

    def __call__(self, request: Request) -> CallerIdentity:
        patient_id = (request.headers.get("X-Patient-Id") or "").strip() or None
        coadmin_id = (request.headers.get("X-Coadmin-Id") or "").strip() or None
        if not patient_id and not coadmin_id:
            raise AuthenticationFailure("missing caller identity")
        return CallerIdentity(patient_id=patient_id, coadmin_id=coadmin_id)


def get_identity_provider(request: Request) -> IdentityProvider:
    return getattr(request.app.state, "identity_provider", None) or HeaderIdentityProvider()


def get_caller(
    request: Request, provider: IdentityProvider = Depends(get_identity_provider)
) -> CallerIdentity:
    return provider(request)


def require_patient_access(
    patient_id: str,
    caller: CallerIdentity = Depends(get_caller),
    services: OutreachServices = Depends(get_services),
) -> CallerIdentity:
    if services.patients.get(patient_id) is None:
        raise NotFoundFailure(f"patient {patient_id} not found")
    if not caller.can_manage(patient_id, services.patients):
        logger.warning("Caller %s denied access to patient %s", caller.caller_id, patient_id)
        raise AuthenticationFailure("caller may not manage this patient", status_code=403)
    return caller


# ═══════════════════════════════════════════════════════════════════════════════
# SHARED SECRET
# ═══════════════════════════════════════════════════════════════════════════════


def require_tool_secret(
    x_agent_secret: Optional[str] = Header(default=None, alias="X-Agent-Secret"),
    services: OutreachServices = Depends(get_services),
) -> None:
    """Gate for the voice agent's tool calls and the periodic outreach trigger."""
    expected = services.settings.agent_tool_secret
    if not expected:
        raise AuthenticationFailure("agent tool secret not configured")
    if not x_agent_secret or not hmac.compare_digest(x_agent_secret.encode(), expected.encode()):
        raise AuthenticationFailure("invalid agent secret")
