"""
Record stores.

In-memory implementations back tests and local development; the Redis
repositories are selected when ``REDIS_HOST`` is configured.
"""

from .base import (
    HealthRecordStore,
    IdempotencyGuard,
    PatientDirectory,
    ScheduleRepository,
    SessionRepository,
    normalize_phone,
)
from .memory import (
    InMemoryHealthRecordStore,
    InMemoryIdempotencyGuard,
    InMemoryPatientDirectory,
    InMemoryScheduleRepository,
    InMemorySessionRepository,
)

__all__ = [
    "HealthRecordStore",
    "IdempotencyGuard",
    "PatientDirectory",
    "ScheduleRepository",
    "SessionRepository",
    "normalize_phone",
    "InMemoryHealthRecordStore",
    "InMemoryIdempotencyGuard",
    "InMemoryPatientDirectory",
    "InMemoryScheduleRepository",
    "InMemorySessionRepository",
]
