"""
Tests for webhook signature verification
========================================

Timestamped (voice provider) and plain (WhatsApp provider) HMAC schemes.
"""

from __future__ import annotations

import pytest

from apps.murphy.backend.src.webhooks.signature import (
    compute_signature,
    verify,
    verify_plain,
)

SECRET = "whsec_test"
BODY = b'{"type":"post_call_transcription","data":{"conversation_id":"conv_1"}}'
NOW_TS = 1_741_618_800


def _header(body: bytes = BODY, secret: str = SECRET, ts: int = NOW_TS) -> str:
    return f"t={ts},v0={compute_signature(body, secret, ts)}"


# ═══════════════════════════════════════════════════════════════════════════════
# TIMESTAMPED SCHEME
# ═══════════════════════════════════════════════════════════════════════════════


class TestVerify:
    def test_valid_signature_accepted(self):
        result = verify(BODY, _header(), SECRET, now=NOW_TS)
        assert result.ok
        assert result.failure_reason is None

    def test_missing_secret_fails_closed(self):
        result = verify(BODY, _header(), None, now=NOW_TS)
        assert not result.ok
        assert result.failure_reason == "missing_secret"
        assert result.status_code == 401

    def test_missing_header(self):
        result = verify(BODY, None, SECRET, now=NOW_TS)
        assert (result.ok, result.failure_reason, result.status_code) == (
            False,
            "missing_signature",
            400,
        )

    def test_missing_timestamp(self):
        header = f"v0={compute_signature(BODY, SECRET, NOW_TS)}"
        result = verify(BODY, header, SECRET, now=NOW_TS)
        assert result.failure_reason == "missing_timestamp"
        assert result.status_code == 400

    def test_header_without_signature(self):
        result = verify(BODY, f"t={NOW_TS}", SECRET, now=NOW_TS)
        assert result.failure_reason == "malformed_signature"
        assert result.status_code == 400

    def test_wrong_secret_rejected(self):
        result = verify(BODY, _header(secret="other"), SECRET, now=NOW_TS)
        assert result.failure_reason == "signature_mismatch"
        assert result.status_code == 401

    def test_trailing_whitespace_changes_verdict(self):
        result = verify(BODY + b" ", _header(), SECRET, now=NOW_TS)
        assert not result.ok
        assert result.failure_reason == "signature_mismatch"

    def test_timestamp_is_part_of_signed_payload(self):
        header = f"t={NOW_TS - 5},v0={compute_signature(BODY, SECRET, NOW_TS)}"
        assert not verify(BODY, header, SECRET, now=NOW_TS).ok


class TestReplayWindow:
    def test_one_second_inside_window_accepted(self):
        ts = NOW_TS - 1799
        assert verify(BODY, _header(ts=ts), SECRET, now=NOW_TS).ok

    def test_exactly_thirty_minutes_accepted(self):
        ts = NOW_TS - 1800
        assert verify(BODY, _header(ts=ts), SECRET, now=NOW_TS).ok

    def test_older_than_thirty_minutes_rejected(self):
        ts = NOW_TS - 1801
        result = verify(BODY, _header(ts=ts), SECRET, now=NOW_TS)
        assert result.failure_reason == "timestamp_expired"
        assert result.status_code == 401

    def test_far_future_timestamp_rejected(self):
        ts = NOW_TS + 3600
        result = verify(BODY, _header(ts=ts), SECRET, now=NOW_TS)
        assert result.failure_reason == "timestamp_in_future"

    def test_non_numeric_timestamp(self):
        header = f"t=yesterday,v0={compute_signature(BODY, SECRET, NOW_TS)}"
        result = verify(BODY, header, SECRET, now=NOW_TS)
        assert result.failure_reason == "malformed_timestamp"
        assert result.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════════
# PLAIN SCHEME
# ═══════════════════════════════════════════════════════════════════════════════


class TestVerifyPlain:
    def test_valid_signature_accepted(self):
        assert verify_plain(BODY, compute_signature(BODY, SECRET), SECRET).ok

    def test_sha256_prefix_accepted(self):
        header = "sha256=" + compute_signature(BODY, SECRET)
        assert verify_plain(BODY, header, SECRET).ok

    def test_mismatch_rejected(self):
        result = verify_plain(BODY, compute_signature(b"{}", SECRET), SECRET)
        assert result.failure_reason == "signature_mismatch"
        assert result.status_code == 401

    @pytest.mark.parametrize(
        "header,secret,reason",
        [(None, SECRET, "missing_signature"), ("abc", None, "missing_secret")],
    )
    def test_missing_inputs(self, header, secret, reason):
        assert verify_plain(BODY, header, secret).failure_reason == reason

    def test_stale_timestamp_header_rejected(self):
        result = verify_plain(
            BODY,
            compute_signature(BODY, SECRET),
            SECRET,
            timestamp_header=str(NOW_TS - 4000),
            now=NOW_TS,
        )
        assert result.failure_reason == "timestamp_expired"
