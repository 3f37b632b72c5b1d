"""
Tests for PatientContextBuilder
===============================
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from apps.murphy.backend.src.context import PatientContextBuilder
from apps.murphy.backend.src.context.builder import format_relative
from apps.murphy.backend.src.context.insulin import NOT_CONFIGURED, insulin_day_status
from apps.murphy.backend.src.errors import NotFoundFailure
from apps.murphy.backend.src.models import (
    GlucoseRecord,
    InsulinDoseRecord,
    InsulinType,
    SleepRecord,
)


@pytest.fixture
def builder(patients, records_with_regimen):
    return PatientContextBuilder(patients, records_with_regimen, history_limit=3)


# ═══════════════════════════════════════════════════════════════════════════════
# CONTEXT ASSEMBLY
# ═══════════════════════════════════════════════════════════════════════════════


class TestBuildContext:
    @pytest.mark.asyncio
    async def test_profile_fields(self, builder, now):
        context = await builder.build_context("pat-001", now)
        assert context.patient_name == "Ana Gomez"
        assert context.patient_age == "42"
        assert context.diabetes_type == "Type 1"
        assert context.diagnosis_year == "2012"
        assert context.phone_number == "+57 300 123 4567"

    @pytest.mark.asyncio
    async def test_empty_history_has_explicit_placeholders(self, builder, now):
        context = await builder.build_context("pat-001", now)
        assert context.recent_glucometries == "No records"
        assert context.recent_sleep == "No records"
        assert context.recent_insulin == "No records"
        assert context.insulin_basal_schedule == NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_sparse_profile_never_omits_fields(self, builder, now):
        context = await builder.build_context("pat-002", now)
        variables = context.as_dynamic_variables()
        assert variables["patient_age"] == "unknown"
        assert variables["diabetes_type"] == "not specified"
        assert variables["insulin_rapid_schedule"] == NOT_CONFIGURED
        assert all(isinstance(value, str) and value for value in variables.values())
        assert "phone_number" not in variables

    @pytest.mark.asyncio
    async def test_recent_records_newest_first_and_limited(self, builder, records_with_regimen, now):
        for minutes, value in [(300, 95), (120, 180), (30, 110), (10, 140)]:
            records_with_regimen.add(
                GlucoseRecord(
                    patient_id="pat-001",
                    recorded_at=now - timedelta(minutes=minutes),
                    value=value,
                )
            )
        context = await builder.build_context("pat-001", now)
        assert context.recent_glucometries == (
            "140 mg/dL (10 min ago), 110 mg/dL (30 min ago), 180 mg/dL (2h ago)"
        )

    @pytest.mark.asyncio
    async def test_sleep_and_insulin_summaries(self, builder, records_with_regimen, now):
        records_with_regimen.add(
            SleepRecord(
                patient_id="pat-001",
                recorded_at=now - timedelta(hours=3),
                hours=7.5,
                local_date=date(2025, 3, 10),
            )
        )
        records_with_regimen.add(
            InsulinDoseRecord(
                patient_id="pat-001",
                recorded_at=now - timedelta(hours=2),
                dose=6,
                insulin_type=InsulinType.RAPID,
            )
        )
        context = await builder.build_context("pat-001", now)
        assert context.recent_sleep == "7.5 hours (2025-03-10)"
        assert context.recent_insulin == "6 units rapid (2h ago)"
        assert context.insulin_rapid_schedule == (
            "6 units, 3 times a day (1 of 3 completed today, 2 remaining)"
        )

    @pytest.mark.asyncio
    async def test_unknown_patient(self, builder, now):
        with pytest.raises(NotFoundFailure):
            await builder.build_context("nobody", now)


# ═══════════════════════════════════════════════════════════════════════════════
# INSULIN DAY STATUS
# ═══════════════════════════════════════════════════════════════════════════════


class TestInsulinDayStatus:
    def test_counts_only_patient_local_day(self, records_with_regimen, now):
        # 04:00 UTC today is 23:00 local yesterday; must not count
        for hours_ago in (11, 4, 1):
            records_with_regimen.add(
                InsulinDoseRecord(
                    patient_id="pat-001",
                    recorded_at=now - timedelta(hours=hours_ago),
                    dose=6,
                    insulin_type=InsulinType.RAPID,
                )
            )
        status = insulin_day_status(records_with_regimen, "pat-001", InsulinType.RAPID, now, -300)
        assert status.taken_today == 2
        assert status.remaining == 1

    def test_complete_day(self, records_with_regimen, now):
        for hours_ago in (3, 2, 1):
            records_with_regimen.add(
                InsulinDoseRecord(
                    patient_id="pat-001",
                    recorded_at=now - timedelta(hours=hours_ago),
                    dose=6,
                    insulin_type=InsulinType.RAPID,
                )
            )
        status = insulin_day_status(records_with_regimen, "pat-001", InsulinType.RAPID, now, -300)
        assert status.text.endswith("(3 of 3 completed today, complete)")

    def test_not_configured(self, records, now):
        status = insulin_day_status(records, "pat-001", InsulinType.BASAL, now, -300)
        assert not status.configured
        assert status.remaining is None
        assert status.text == NOT_CONFIGURED


class TestFormatRelative:
    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(minutes=5), "5 min ago"),
            (timedelta(hours=3), "3h ago"),
            (timedelta(hours=30), "yesterday"),
            (timedelta(days=4), "4 days ago"),
            (timedelta(days=20), "18 Feb"),
        ],
    )
    def test_buckets(self, now, delta, expected):
        assert format_relative(now - delta, now) == expected
