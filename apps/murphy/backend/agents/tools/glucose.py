"""
Glucose Tools
=============

Save a new glucometry or correct the most recent one.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import Field

from apps.murphy.backend.agents.tools.common import (
    NOTES_PROPERTY,
    ToolArgs,
    measurement_result,
    no_record_result,
)
from apps.murphy.backend.agents.tools.registry import ToolContext, register_tool
from apps.murphy.backend.src.models import GlucoseRecord, GlucoseSlot, MeasurementCategory, MeasurementDraft
from utils.ml_logging import get_logger

logger = get_logger("agents.tools.glucose")

_SLOT_PROPERTY: Dict[str, Any] = {
    "type": "string",
    "enum": [slot.value for slot in GlucoseSlot],
    "description": "Meal moment of the reading, if the patient mentioned it",
}


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

save_glucose_schema: Dict[str, Any] = {
    "name": "save_glucose",
    "description": (
        "Save a new blood glucose reading in mg/dL for the patient. "
        "If the result comes back marked unusual, confirm the value with the patient on your next turn."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "value": {"type": "number", "description": "Glucose in mg/dL"},
            "slot": _SLOT_PROPERTY,
            "notes": NOTES_PROPERTY,
        },
        "required": ["value"],
    },
}

update_glucose_schema: Dict[str, Any] = {
    "name": "update_glucose",
    "description": (
        "Correct the patient's most recent glucose reading. "
        "Use when the patient says the last value was wrong."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "value": {"type": "number", "description": "Corrected glucose in mg/dL"},
            "slot": _SLOT_PROPERTY,
            "notes": NOTES_PROPERTY,
        },
        "required": ["value"],
    },
}


class GlucoseArgs(ToolArgs):
    value: float = Field(gt=0)
    slot: Optional[GlucoseSlot] = None


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTORS
# ═══════════════════════════════════════════════════════════════════════════════

def save_glucose(args: GlucoseArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Persist a new reading; out-of-range values are stored and flagged."""
    draft = MeasurementDraft(
        patient_id=ctx.patient_id,
        category=MeasurementCategory.GLUCOSE,
        payload={"value": args.value, "slot": args.slot},
        notes=args.notes,
        proposed_at=ctx.now,
    )
    record = ctx.records.add(draft.to_record())
    logger.info("Saved glucose %s for patient %s", record.record_id, ctx.patient_id)
    return measurement_result(
        record, ctx, action="saved", message=f"Saved glucose of {args.value:g} mg/dL."
    )


def update_glucose(args: GlucoseArgs, ctx: ToolContext) -> Dict[str, Any]:
    latest = ctx.records.latest(ctx.patient_id, MeasurementCategory.GLUCOSE)
    if not isinstance(latest, GlucoseRecord):
        return no_record_result(MeasurementCategory.GLUCOSE)

    previous = latest.value
    changes: Dict[str, Any] = {"value": args.value}
    if args.slot is not None:
        changes["slot"] = args.slot
    if args.notes is not None:
        changes["notes"] = args.notes
    record = ctx.records.update(latest.model_copy(update=changes))
    logger.info("Corrected glucose %s for patient %s", record.record_id, ctx.patient_id)
    return measurement_result(
        record,
        ctx,
        action="updated",
        message=f"Corrected the last glucose from {previous:g} to {args.value:g} mg/dL.",
        previous_value=previous,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION
# ═══════════════════════════════════════════════════════════════════════════════

register_tool("save_glucose", save_glucose_schema, save_glucose, tags={"glucose", "save"})
register_tool("update_glucose", update_glucose_schema, update_glucose, tags={"glucose", "update"})
