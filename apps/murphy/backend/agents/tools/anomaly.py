"""
Anomaly Policy
==============

Advisory bounds checks applied after a measurement has been persisted. A flag
never blocks a write; it tells the conversational layer to ask a confirmation
question on its next turn.
"""

from __future__ import annotations

from typing import List, Optional

from apps.murphy.backend.config.settings import AnomalyThresholds
from apps.murphy.backend.src.models import (
    AnomalyFlag,
    DizzinessRecord,
    GlucoseRecord,
    HealthRecord,
    InsulinDoseRecord,
    MeasurementCategory,
    SleepRecord,
    StressRecord,
)


class AnomalyPolicy:
    def __init__(self, thresholds: Optional[AnomalyThresholds] = None):
        self.thresholds = thresholds or AnomalyThresholds()

    def _below(
        self, category: MeasurementCategory, field: str, value: float, bound: float, follow_up: str
    ) -> Optional[AnomalyFlag]:
        if value < bound:
            return AnomalyFlag(
                category=category,
                field=field,
                value=value,
                reason="below_plausible_range",
                threshold=bound,
                follow_up=follow_up,
            )
        return None

    def _above(
        self,
        category: MeasurementCategory,
        field: str,
        value: float,
        bound: float,
        follow_up: str,
        inclusive: bool = False,
    ) -> Optional[AnomalyFlag]:
        if value > bound or (inclusive and value == bound):
            return AnomalyFlag(
                category=category,
                field=field,
                value=value,
                reason="above_plausible_range",
                threshold=bound,
                follow_up=follow_up,
            )
        return None

    def evaluate(self, record: HealthRecord) -> List[AnomalyFlag]:
        """Return every bound the record crosses; empty when it looks plausible."""
        t = self.thresholds
        flags: List[Optional[AnomalyFlag]] = []

        if isinstance(record, GlucoseRecord):
            flags.append(
                self._below(
                    record.category, "value", record.value, t.glucose_low,
                    f"{record.value:g} mg/dL is low. Confirm the reading and ask how they feel.",
                )
            )
            flags.append(
                self._above(
                    record.category, "value", record.value, t.glucose_high,
                    f"{record.value:g} mg/dL is high. Confirm the reading with the patient.",
                )
            )
        elif isinstance(record, InsulinDoseRecord):
            flags.append(
                self._above(
                    record.category, "dose", record.dose, t.insulin_dose_high,
                    f"{record.dose:g} units is an unusually large dose. Confirm the amount.",
                )
            )
        elif isinstance(record, SleepRecord):
            flags.append(
                self._below(
                    record.category, "hours", record.hours, t.sleep_low,
                    f"Only {record.hours:g} hours of sleep. Confirm and ask how they rested.",
                )
            )
            flags.append(
                self._above(
                    record.category, "hours", record.hours, t.sleep_high,
                    f"{record.hours:g} hours of sleep is unusually long. Confirm the amount.",
                )
            )
        elif isinstance(record, StressRecord):
            flags.append(
                self._above(
                    record.category, "level", record.level, t.stress_high,
                    "Stress is very high. Confirm the level and ask what is going on.",
                    inclusive=True,
                )
            )
        elif isinstance(record, DizzinessRecord):
            flags.append(
                self._above(
                    record.category, "severity", record.severity, t.dizziness_high,
                    "Dizziness is severe. Confirm and suggest checking glucose now.",
                    inclusive=True,
                )
            )

        return [flag for flag in flags if flag is not None]
