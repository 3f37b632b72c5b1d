from .calculator import local_date, local_day_bounds, next_run, patient_timezone, run_on_date
from .scheduler import OutreachScheduler

__all__ = [
    "OutreachScheduler",
    "local_date",
    "local_day_bounds",
    "next_run",
    "patient_timezone",
    "run_on_date",
]
