"""In-memory repositories: the persistence contract the agent core depends on.

Records are stored as JSON snapshots and re-validated on read, so callers get
their own copies and a durable backend can drop in behind the same methods.
"""

from __future__ import annotations

import threading
import uuid
from typing import Generic, TypeVar

from pydantic import BaseModel

from agent.models import ApprovalRequest, ApprovalStatus, Incident
from playbook.models import Playbook, PlaybookExecution

M = TypeVar("M", bound=BaseModel)


class _JsonRepository(Generic[M]):
    """Dict-like repository keyed by id, storing serialized models."""

    def __init__(self, model: type[M], id_field: str) -> None:
        self._model = model
        self._id_field = id_field
        self._lock = threading.Lock()
        self._rows: dict[str, str] = {}

    def save(self, record: M) -> M:
        key = getattr(record, self._id_field)
        with self._lock:
            self._rows[key] = record.model_dump_json()
        return record

    def find_by_id(self, key: str) -> M | None:
        with self._lock:
            raw = self._rows.get(key)
        return self._model.model_validate_json(raw) if raw is not None else None

    def find_all(self) -> list[M]:
        with self._lock:
            rows = list(self._rows.values())
        return [self._model.model_validate_json(r) for r in rows]

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()


class ApprovalRepository(_JsonRepository[ApprovalRequest]):
    def __init__(self) -> None:
        super().__init__(ApprovalRequest, "id")

    @staticmethod
    def new_id() -> str:
        return f"APR-{uuid.uuid4().hex[:10].upper()}"

    def find_by_status(self, status: ApprovalStatus) -> list[ApprovalRequest]:
        return sorted(
            (r for r in self.find_all() if r.status == status),
            key=lambda r: r.requested_at,
        )

    def find_by_session(self, session_id: str) -> list[ApprovalRequest]:
        return sorted(
            (r for r in self.find_all() if r.session_id == session_id),
            key=lambda r: r.requested_at,
        )

    def find_by_session_and_status(self, session_id: str, status: ApprovalStatus) -> list[ApprovalRequest]:
        return [r for r in self.find_by_session(session_id) if r.status == status]


class ExecutionRepository(_JsonRepository[PlaybookExecution]):
    def __init__(self) -> None:
        super().__init__(PlaybookExecution, "id")

    @staticmethod
    def new_id() -> str:
        return f"EXE-{uuid.uuid4().hex[:10].upper()}"


class PlaybookRepository(_JsonRepository[Playbook]):
    """Playbook definitions. Disabled definitions are kept but not loaded."""

    def __init__(self) -> None:
        super().__init__(Playbook, "id")

    def find_enabled(self) -> list[Playbook]:
        return [p for p in self.find_all() if p.enabled]


class IncidentRepository(_JsonRepository[Incident]):
    def __init__(self) -> None:
        super().__init__(Incident, "incident_id")
