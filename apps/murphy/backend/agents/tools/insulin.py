"""
Insulin Tools
=============

Record an insulin dose or correct the most recent one. The insulin type is
mandatory on save: the agent has to ask the patient rather than guess, so a
save without a type is rejected before anything is written.
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
from apps.murphy.backend.src.context.insulin import InsulinDayStatus, insulin_day_status
from apps.murphy.backend.src.models import (
    AnomalyFlag,
    InsulinDoseRecord,
    InsulinType,
    MeasurementCategory,
    MeasurementDraft,
)
from utils.ml_logging import get_logger

logger = get_logger("agents.tools.insulin")

_TYPE_PROPERTY: Dict[str, Any] = {
    "type": "string",
    "enum": [t.value for t in InsulinType],
    "description": "rapid (with meals) or basal (long acting). Ask the patient if unclear.",
}


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

save_insulin_schema: Dict[str, Any] = {
    "name": "save_insulin",
    "description": (
        "Record an insulin dose the patient just applied. "
        "insulin_type is required; ask whether it was rapid or basal before calling."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "dose": {"type": "number", "description": "Units applied"},
            "insulin_type": _TYPE_PROPERTY,
            "notes": NOTES_PROPERTY,
        },
        "required": ["dose", "insulin_type"],
    },
}

update_insulin_schema: Dict[str, Any] = {
    "name": "update_insulin",
    "description": "Correct the patient's most recent insulin dose (units and, optionally, type).",
    "parameters": {
        "type": "object",
        "properties": {
            "dose": {"type": "number", "description": "Corrected units"},
            "insulin_type": _TYPE_PROPERTY,
            "notes": NOTES_PROPERTY,
        },
        "required": ["dose"],
    },
}


class SaveInsulinArgs(ToolArgs):
    dose: float = Field(gt=0)
    insulin_type: InsulinType


class UpdateInsulinArgs(ToolArgs):
    dose: float = Field(gt=0)
    insulin_type: Optional[InsulinType] = None


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _regimen_flags(status: InsulinDayStatus, dose: float) -> List[AnomalyFlag]:
    if not status.configured:
        return [
            AnomalyFlag(
                category=MeasurementCategory.INSULIN,
                field="insulin_type",
                value=status.insulin_type.value,
                reason="no_regimen_configured",
                follow_up=(
                    f"No {status.insulin_type.value} insulin plan is configured. "
                    "Confirm the type with the patient."
                ),
            )
        ]
    if status.taken_today > status.doses_per_day:
        return [
            AnomalyFlag(
                category=MeasurementCategory.INSULIN,
                field="dose",
                value=dose,
                reason="daily_limit_exceeded",
                threshold=float(status.doses_per_day),
                follow_up=(
                    f"That is dose {status.taken_today} of {status.doses_per_day} planned "
                    f"{status.insulin_type.value} doses today. Confirm it was not already recorded."
                ),
            )
        ]
    return []


def _status_fields(status: InsulinDayStatus) -> Dict[str, Any]:
    return {
        "doses_taken_today": status.taken_today,
        "doses_remaining": status.remaining,
        "configured_doses_per_day": status.doses_per_day,
        "day_status": status.text,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTORS
# ═══════════════════════════════════════════════════════════════════════════════

def save_insulin(args: SaveInsulinArgs, ctx: ToolContext) -> Dict[str, Any]:
    draft = MeasurementDraft(
        patient_id=ctx.patient_id,
        category=MeasurementCategory.INSULIN,
        payload={"dose": args.dose, "insulin_type": args.insulin_type},
        notes=args.notes,
        proposed_at=ctx.now,
    )
    record = ctx.records.add(draft.to_record())
    status = insulin_day_status(
        ctx.records, ctx.patient_id, args.insulin_type, ctx.now, ctx.utc_offset_minutes
    )
    logger.info(
        "Saved %s insulin %s for patient %s (%d today)",
        args.insulin_type.value,
        record.record_id,
        ctx.patient_id,
        status.taken_today,
    )
    return measurement_result(
        record,
        ctx,
        action="saved",
        message=f"Saved {args.dose:g} units of {args.insulin_type.value} insulin.",
        extra_flags=_regimen_flags(status, args.dose),
        **_status_fields(status),
    )


def update_insulin(args: UpdateInsulinArgs, ctx: ToolContext) -> Dict[str, Any]:
    latest = ctx.records.latest(ctx.patient_id, MeasurementCategory.INSULIN)
    if not isinstance(latest, InsulinDoseRecord):
        return no_record_result(MeasurementCategory.INSULIN)

    previous = latest.dose
    changes: Dict[str, Any] = {"dose": args.dose}
    if args.insulin_type is not None:
        changes["insulin_type"] = args.insulin_type
    if args.notes is not None:
        changes["notes"] = args.notes
    record = ctx.records.update(latest.model_copy(update=changes))
    status = insulin_day_status(
        ctx.records, ctx.patient_id, record.insulin_type, ctx.now, ctx.utc_offset_minutes
    )
    return measurement_result(
        record,
        ctx,
        action="updated",
        message=f"Corrected the last insulin dose from {previous:g} to {args.dose:g} units.",
        previous_value=previous,
        **_status_fields(status),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION
# ═══════════════════════════════════════════════════════════════════════════════

register_tool("save_insulin", save_insulin_schema, save_insulin, tags={"insulin", "save"})
register_tool("update_insulin", update_insulin_schema, update_insulin, tags={"insulin", "update"})
