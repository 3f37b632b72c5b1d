from .builder import PatientContext, PatientContextBuilder, format_relative
from .insulin import NOT_CONFIGURED, InsulinDayStatus, insulin_day_status

__all__ = [
    "NOT_CONFIGURED",
    "InsulinDayStatus",
    "PatientContext",
    "PatientContextBuilder",
    "format_relative",
    "insulin_day_status",
]
