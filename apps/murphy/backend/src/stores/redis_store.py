"""
Redis-backed schedule and session repositories.

Documents are stored as JSON under ``<prefix>:schedule:<id>`` and
``<prefix>:session:<conversation_id>``; secondary indexes are plain Redis sets
maintained inside the same ``MULTI`` block as the document write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from apps.murphy.backend.src.models import (
    Channel,
    ConversationSession,
    OutreachSchedule,
    SessionStatus,
    TERMINAL_STATUSES,
)
from apps.murphy.backend.src.stores.base import normalize_phone
from src.redis.manager import RedisManager
from utils.ml_logging import get_logger

logger = get_logger("stores.redis")


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RedisScheduleRepository:
    def __init__(self, manager: RedisManager):
        self.redis = manager

    def _doc_key(self, schedule_id: str) -> str:
        return self.redis.key("schedule", schedule_id)

    def _patient_index(self, patient_id: str) -> str:
        return self.redis.key("schedules", "patient", patient_id)

    @property
    def _active_index(self) -> str:
        return self.redis.key("schedules", "active")

    def _index_hook(self, pipe: Any, _before: Optional[Dict[str, Any]], after: Dict[str, Any]) -> None:
        pipe.sadd(self._patient_index(after["patient_id"]), after["schedule_id"])
        if after.get("is_active"):
            pipe.sadd(self._active_index, after["schedule_id"])
        else:
            pipe.srem(self._active_index, after["schedule_id"])

    def _load_many(self, ids: List[str]) -> List[OutreachSchedule]:
        docs = self.redis.mget_json([self._doc_key(i) for i in ids])
        return [OutreachSchedule.model_validate(doc) for doc in docs]

    def add(self, schedule: OutreachSchedule) -> OutreachSchedule:
        doc = schedule.model_dump(mode="json")
        self.redis.transaction(self._doc_key(schedule.schedule_id), lambda _cur: doc, self._index_hook)
        return schedule

    def get(self, schedule_id: str) -> Optional[OutreachSchedule]:
        doc = self.redis.get_json(self._doc_key(schedule_id))
        return OutreachSchedule.model_validate(doc) if doc else None

    def list_for_patient(self, patient_id: str) -> List[OutreachSchedule]:
        return self._load_many(self.redis.set_members(self._patient_index(patient_id)))

    def list_active(self) -> List[OutreachSchedule]:
        return [s for s in self._load_many(self.redis.set_members(self._active_index)) if s.is_active]

    def update(self, schedule: OutreachSchedule) -> OutreachSchedule:
        doc = schedule.model_dump(mode="json")

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                raise KeyError(f"schedule {schedule.schedule_id} not found")
            return doc

        self.redis.transaction(self._doc_key(schedule.schedule_id), mutate, self._index_hook)
        return schedule

    def delete(self, schedule_id: str) -> bool:
        existing = self.get(schedule_id)
        if existing is None:
            return False
        self.redis.delete(self._doc_key(schedule_id))
        self.redis.remove_from_set(self._patient_index(existing.patient_id), schedule_id)
        self.redis.remove_from_set(self._active_index, schedule_id)
        return True

    def claim(
        self, schedule_id: str, expected_next_run: datetime, changes: Dict[str, Any]
    ) -> Optional[OutreachSchedule]:
        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None or not current.get("is_active"):
                return None
            if _parse_dt(current.get("next_run")) != expected_next_run:
                return None
            schedule = OutreachSchedule.model_validate(current).model_copy(update=changes)
            return schedule.model_dump(mode="json")

        committed = self.redis.transaction(self._doc_key(schedule_id), mutate, self._index_hook)
        return OutreachSchedule.model_validate(committed) if committed else None


class RedisSessionRepository:
    def __init__(self, manager: RedisManager):
        self.redis = manager

    def _doc_key(self, conversation_id: str) -> str:
        return self.redis.key("session", conversation_id)

    @property
    def _open_index(self) -> str:
        return self.redis.key("sessions", "open")

    @property
    def _retry_index(self) -> str:
        return self.redis.key("sessions", "retry")

    def _phone_index(self, channel: str, phone: Optional[str]) -> str:
        return self.redis.key("sessions", "phone", channel, normalize_phone(phone))

    def _index_hook(self, pipe: Any, _before: Optional[Dict[str, Any]], after: Dict[str, Any]) -> None:
        cid = after["conversation_id"]
        if SessionStatus(after["status"]) in TERMINAL_STATUSES:
            pipe.srem(self._open_index, cid)
        else:
            pipe.sadd(self._open_index, cid)
        if after.get("retry_due_at") and not after.get("retry_dispatched"):
            pipe.sadd(self._retry_index, cid)
        else:
            pipe.srem(self._retry_index, cid)
        if after.get("phone_number"):
            pipe.sadd(self._phone_index(after["channel"], after["phone_number"]), cid)

    def _load_many(self, ids: List[str]) -> List[ConversationSession]:
        docs = self.redis.mget_json([self._doc_key(i) for i in ids])
        return [ConversationSession.model_validate(doc) for doc in docs]

    def create_if_absent(self, session: ConversationSession) -> ConversationSession:
        doc = session.model_dump(mode="json")
        existing: Dict[str, Any] = {}

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is not None:
                existing["doc"] = current
                return None
            return doc

        self.redis.transaction(self._doc_key(session.conversation_id), mutate, self._index_hook)
        if "doc" in existing:
            logger.info("Session %s already exists; keeping original", session.conversation_id)
            return ConversationSession.model_validate(existing["doc"])
        return session

    def get(self, conversation_id: str) -> Optional[ConversationSession]:
        doc = self.redis.get_json(self._doc_key(conversation_id))
        return ConversationSession.model_validate(doc) if doc else None

    def find_active_by_phone(
        self, phone: str, channel: Channel
    ) -> Optional[ConversationSession]:
        ids = self.redis.set_members(self._phone_index(channel.value, phone))
        active = [s for s in self._load_many(ids) if not s.is_terminal]
        return max(active, key=lambda s: s.started_at) if active else None

    def transition(
        self,
        conversation_id: str,
        allowed_from: Collection[SessionStatus],
        changes: Dict[str, Any],
    ) -> Optional[ConversationSession]:
        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                return None
            session = ConversationSession.model_validate(current)
            if session.status not in allowed_from:
                return None
            return session.model_copy(update=changes).model_dump(mode="json")

        committed = self.redis.transaction(self._doc_key(conversation_id), mutate, self._index_hook)
        return ConversationSession.model_validate(committed) if committed else None

    def list_stale(
        self,
        statuses: Collection[SessionStatus],
        older_than: datetime,
        channel: Optional[Channel] = None,
    ) -> List[ConversationSession]:
        return [
            s
            for s in self._load_many(self.redis.set_members(self._open_index))
            if s.status in statuses
            and s.started_at <= older_than
            and (channel is None or s.channel == channel)
        ]

    def list_due_retries(self, now: datetime) -> List[ConversationSession]:
        return [
            s
            for s in self._load_many(self.redis.set_members(self._retry_index))
            if s.retry_due_at is not None and s.retry_due_at <= now and not s.retry_dispatched
        ]

    def mark_retry_dispatched(self, conversation_id: str) -> bool:
        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None or current.get("retry_dispatched") or not current.get("retry_due_at"):
                return None
            return {**current, "retry_dispatched": True}

        committed = self.redis.transaction(self._doc_key(conversation_id), mutate, self._index_hook)
        return committed is not None


class RedisIdempotencyGuard:
    def __init__(self, manager: RedisManager, ttl_seconds: int = 24 * 3600):
        self.redis = manager
        self.ttl_seconds = ttl_seconds

    def first_seen(self, key: str) -> bool:
        return self.redis.claim_key(self.redis.key("seen", key), self.ttl_seconds)

    def release(self, key: str) -> None:
        self.redis.delete(self.redis.key("seen", key))
