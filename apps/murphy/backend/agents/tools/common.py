"""Shared pieces for measurement tool executors."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from apps.murphy.backend.agents.tools.registry import ToolContext
from apps.murphy.backend.src.models import AnomalyFlag, HealthRecord, MeasurementCategory
from utils.ml_logging import get_logger

logger = get_logger("agents.tools.common")


class ToolArgs(BaseModel):
    """Base for tool argument models; unknown keys from the agent are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    notes: Optional[str] = Field(default=None, max_length=1000)


NOTES_PROPERTY: Dict[str, Any] = {
    "type": "string",
    "description": "Optional free-text note from the patient",
}


def record_summary(record: HealthRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", exclude={"patient_id"})


def measurement_result(
    record: HealthRecord,
    ctx: ToolContext,
    *,
    action: str,
    message: str,
    extra_flags: Optional[List[AnomalyFlag]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build the structured result for a persisted record.

    The anomaly policy runs here, after the write, so flags only ever annotate
    a value that is already stored.
    """
    flags = ctx.policy.evaluate(record) + list(extra_flags or [])
    result: Dict[str, Any] = {
        "success": True,
        "action": action,
        "category": record.category.value,
        "record": record_summary(record),
        "message": message,
        "unusual": bool(flags),
        "anomalies": [flag.model_dump(mode="json") for flag in flags],
        **extra,
    }
    if flags:
        result["follow_up"] = " ".join(flag.follow_up for flag in flags)
        logger.info(
            "Patient %s %s %s flagged: %s",
            ctx.patient_id,
            action,
            record.category.value,
            ", ".join(flag.reason for flag in flags),
        )
    return result


def no_record_result(category: MeasurementCategory) -> Dict[str, Any]:
    return {
        "success": False,
        "error_code": "no_record",
        "error": f"no {category.value} record to update",
        "message": f"There is no previous {category.value} record to correct. Save a new one instead.",
    }
