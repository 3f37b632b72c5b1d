"""
Webhook Signature Verification
==============================

HMAC-SHA256 checks for inbound provider webhooks. Both schemes fail closed and
hash the exact raw request bytes; callers must not parse the body before a
successful verdict.

Voice provider header::

    ElevenLabs-Signature: t=<unix seconds>,v0=<hex hmac of "<t>." + body>

WhatsApp provider header::

    X-Webhook-Signature: <hex hmac of body>
    X-Webhook-Timestamp: <unix seconds>   (optional; replay-checked when present)
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_TOLERANCE_SECONDS = 30 * 60


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    failure_reason: Optional[str] = None
    status_code: int = 200

    @classmethod
    def reject(cls, reason: str, status_code: int) -> "VerificationResult":
        return cls(ok=False, failure_reason=reason, status_code=status_code)


ACCEPTED = VerificationResult(ok=True)


def compute_signature(raw_body: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Hex HMAC-SHA256; with a timestamp the signed payload is ``"<t>." + body``."""
    payload = raw_body if timestamp is None else f"{timestamp}.".encode() + raw_body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def _parse_header(header: str) -> Tuple[Optional[str], List[str]]:
    timestamp: Optional[str] = None
    signatures: List[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value.strip()
        elif key == "v0":
            signatures.append(value.strip())
    return timestamp, signatures


def _check_window(
    timestamp: str, now: Optional[float], tolerance_seconds: int
) -> Optional[VerificationResult]:
    try:
        ts = int(timestamp)
    except ValueError:
        return VerificationResult.reject("malformed_timestamp", 400)
    current = time.time() if now is None else now
    age = current - ts
    if age > tolerance_seconds:
        return VerificationResult.reject("timestamp_expired", 401)
    if -age > tolerance_seconds:
        return VerificationResult.reject("timestamp_in_future", 401)
    return None


def _matches(expected: str, candidates: List[str]) -> bool:
    # Compare every candidate so timing does not reveal which one matched.
    matched = False
    for candidate in candidates:
        if hmac.compare_digest(expected.encode(), candidate.encode()):
            matched = True
    return matched


def verify(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    *,
    now: Optional[float] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> VerificationResult:
    """Verify a timestamped ``t=...,v0=...`` signature header."""
    if not secret:
        return VerificationResult.reject("missing_secret", 401)
    if not signature_header:
        return VerificationResult.reject("missing_signature", 400)

    timestamp, signatures = _parse_header(signature_header)
    if timestamp is None:
        return VerificationResult.reject("missing_timestamp", 400)
    if not signatures:
        return VerificationResult.reject("malformed_signature", 400)

    window_failure = _check_window(timestamp, now, tolerance_seconds)
    if window_failure is not None:
        return window_failure

    expected = compute_signature(raw_body, secret, int(timestamp))
    if not _matches(expected, signatures):
        return VerificationResult.reject("signature_mismatch", 401)
    return ACCEPTED


def verify_plain(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    *,
    timestamp_header: Optional[str] = None,
    now: Optional[float] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> VerificationResult:
    """Verify a bare hex signature over the body, with an optional timestamp header."""
    if not secret:
        return VerificationResult.reject("missing_secret", 401)
    if not signature_header:
        return VerificationResult.reject("missing_signature", 400)

    if timestamp_header:
        window_failure = _check_window(timestamp_header.strip(), now, tolerance_seconds)
        if window_failure is not None:
            return window_failure

    expected = compute_signature(raw_body, secret)
    provided = signature_header.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    if not _matches(expected, [provided]):
        return VerificationResult.reject("signature_mismatch", 401)
    return ACCEPTED
