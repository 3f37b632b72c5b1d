"""
Wellness Tools
==============

Sleep, stress and dizziness logging. Sleep is one record per local day: saving
again the same day replaces that day's entry.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from apps.murphy.backend.agents.tools.common import (
    NOTES_PROPERTY,
    ToolArgs,
    measurement_result,
    no_record_result,
)
from apps.murphy.backend.agents.tools.registry import ToolContext, register_tool
from apps.murphy.backend.src.models import (
    DizzinessRecord,
    HealthRecord,
    MeasurementCategory,
    MeasurementDraft,
    SleepRecord,
    StressRecord,
)
from apps.murphy.backend.src.scheduling.calculator import local_date
from utils.ml_logging import get_logger

logger = get_logger("agents.tools.wellness")


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

_SLEEP_PROPERTIES: Dict[str, Any] = {
    "hours": {"type": "number", "description": "Hours slept last night"},
    "quality": {"type": "integer", "description": "Sleep quality 1-10, default 5"},
    "notes": NOTES_PROPERTY,
}

_STRESS_PROPERTIES: Dict[str, Any] = {
    "level": {"type": "integer", "description": "Stress level 1 (calm) to 10 (extreme)"},
    "notes": NOTES_PROPERTY,
}

_DIZZINESS_PROPERTIES: Dict[str, Any] = {
    "severity": {"type": "integer", "description": "Severity 1 (mild) to 10 (severe)"},
    "symptoms": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Accompanying symptoms, e.g. sweating, blurred vision",
    },
    "duration_minutes": {"type": "number", "description": "How long the episode lasted"},
    "notes": NOTES_PROPERTY,
}

save_sleep_schema: Dict[str, Any] = {
    "name": "save_sleep",
    "description": "Save how many hours the patient slept last night. Replaces today's entry if one exists.",
    "parameters": {"type": "object", "properties": _SLEEP_PROPERTIES, "required": ["hours"]},
}

update_sleep_schema: Dict[str, Any] = {
    "name": "update_sleep",
    "description": "Correct the patient's most recent sleep entry.",
    "parameters": {"type": "object", "properties": _SLEEP_PROPERTIES, "required": ["hours"]},
}

save_stress_schema: Dict[str, Any] = {
    "name": "save_stress",
    "description": "Save the patient's current stress level.",
    "parameters": {"type": "object", "properties": _STRESS_PROPERTIES, "required": ["level"]},
}

update_stress_schema: Dict[str, Any] = {
    "name": "update_stress",
    "description": "Correct the patient's most recent stress entry.",
    "parameters": {"type": "object", "properties": _STRESS_PROPERTIES, "required": ["level"]},
}

save_dizziness_schema: Dict[str, Any] = {
    "name": "save_dizziness",
    "description": "Record a dizziness episode the patient reports.",
    "parameters": {"type": "object", "properties": _DIZZINESS_PROPERTIES, "required": ["severity"]},
}

update_dizziness_schema: Dict[str, Any] = {
    "name": "update_dizziness",
    "description": "Correct the patient's most recent dizziness episode.",
    "parameters": {"type": "object", "properties": _DIZZINESS_PROPERTIES, "required": ["severity"]},
}


class SleepArgs(ToolArgs):
    hours: float = Field(ge=0)
    quality: Optional[int] = Field(default=None, ge=1, le=10)


class StressArgs(ToolArgs):
    level: int = Field(ge=1, le=10)


class DizzinessArgs(ToolArgs):
    severity: int = Field(ge=1, le=10)
    symptoms: Optional[List[str]] = None
    duration_minutes: Optional[float] = Field(default=None, ge=0)


def _correct(
    category: MeasurementCategory,
    record_cls: type,
    changes: Dict[str, Any],
    ctx: ToolContext,
) -> Dict[str, Any]:
    latest = ctx.records.latest(ctx.patient_id, category)
    if not isinstance(latest, record_cls):
        return no_record_result(category)
    previous = latest.primary_value
    updates = {key: value for key, value in changes.items() if value is not None}
    record: HealthRecord = ctx.records.update(latest.model_copy(update=updates))
    return measurement_result(
        record,
        ctx,
        action="updated",
        message=f"Corrected the last {category.value} entry.",
        previous_value=previous,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTORS
# ═══════════════════════════════════════════════════════════════════════════════

def save_sleep(args: SleepArgs, ctx: ToolContext) -> Dict[str, Any]:
    day = local_date(ctx.now, ctx.utc_offset_minutes)
    quality = args.quality if args.quality is not None else 5
    existing = ctx.records.sleep_on(ctx.patient_id, day)

    if existing is not None:
        record = ctx.records.update(
            existing.model_copy(
                update={"hours": args.hours, "quality": quality, "notes": args.notes, "recorded_at": ctx.now}
            )
        )
        logger.info("Replaced sleep for %s on %s", ctx.patient_id, day.isoformat())
        return measurement_result(
            record,
            ctx,
            action="saved",
            message=f"Updated today's sleep to {args.hours:g} hours.",
            replaced_previous=True,
        )

    draft = MeasurementDraft(
        patient_id=ctx.patient_id,
        category=MeasurementCategory.SLEEP,
        payload={"hours": args.hours, "quality": quality},
        notes=args.notes,
        proposed_at=ctx.now,
    )
    record = ctx.records.add(draft.to_record(local_date=day))
    return measurement_result(
        record,
        ctx,
        action="saved",
        message=f"Saved {args.hours:g} hours of sleep.",
        replaced_previous=False,
    )


def update_sleep(args: SleepArgs, ctx: ToolContext) -> Dict[str, Any]:
    return _correct(
        MeasurementCategory.SLEEP,
        SleepRecord,
        {"hours": args.hours, "quality": args.quality, "notes": args.notes},
        ctx,
    )


def save_stress(args: StressArgs, ctx: ToolContext) -> Dict[str, Any]:
    draft = MeasurementDraft(
        patient_id=ctx.patient_id,
        category=MeasurementCategory.STRESS,
        payload={"level": args.level},
        notes=args.notes,
        proposed_at=ctx.now,
    )
    record = ctx.records.add(draft.to_record())
    return measurement_result(record, ctx, action="saved", message=f"Saved stress level {args.level}.")


def update_stress(args: StressArgs, ctx: ToolContext) -> Dict[str, Any]:
    return _correct(
        MeasurementCategory.STRESS, StressRecord, {"level": args.level, "notes": args.notes}, ctx
    )


def save_dizziness(args: DizzinessArgs, ctx: ToolContext) -> Dict[str, Any]:
    draft = MeasurementDraft(
        patient_id=ctx.patient_id,
        category=MeasurementCategory.DIZZINESS,
        payload={
            "severity": args.severity,
            "symptoms": args.symptoms or [],
            "duration_minutes": args.duration_minutes,
        },
        notes=args.notes,
        proposed_at=ctx.now,
    )
    record = ctx.records.add(draft.to_record())
    return measurement_result(
        record, ctx, action="saved", message=f"Saved dizziness episode, severity {args.severity}."
    )


def update_dizziness(args: DizzinessArgs, ctx: ToolContext) -> Dict[str, Any]:
    return _correct(
        MeasurementCategory.DIZZINESS,
        DizzinessRecord,
        {
            "severity": args.severity,
            "symptoms": args.symptoms,
            "duration_minutes": args.duration_minutes,
            "notes": args.notes,
        },
        ctx,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION
# ═══════════════════════════════════════════════════════════════════════════════

register_tool("save_sleep", save_sleep_schema, save_sleep, tags={"sleep", "save"})
register_tool("update_sleep", update_sleep_schema, update_sleep, tags={"sleep", "update"})
register_tool("save_stress", save_stress_schema, save_stress, tags={"stress", "save"})
register_tool("update_stress", update_stress_schema, update_stress, tags={"stress", "update"})
register_tool("save_dizziness", save_dizziness_schema, save_dizziness, tags={"dizziness", "save"})
register_tool("update_dizziness", update_dizziness_schema, update_dizziness, tags={"dizziness", "update"})
