"""Audit trail: records every significant action for compliance and traceability."""

from __future__ import annotations

import json
from typing import Any

import structlog

from agent.models import AuditEntry

logger = structlog.get_logger()


class AuditTrail:
    """In-memory audit log.

    ``log`` never raises: an audit failure must not fail the action being
    audited.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def log(
        self,
        actor: str,
        action: str,
        target: str,
        details: dict[str, Any] | None = None,
        session_id: str | None = None,
        success: bool = True,
    ) -> AuditEntry | None:
        try:
            entry = AuditEntry(
                actor=actor,
                action=action,
                target=target,
                details=details or {},
                session_id=session_id,
                success=success,
            )
            self._entries.append(entry)
        except Exception as e:
            logger.error("audit_write_failed", action=action, target=target, error=str(e))
            return None

        logger.debug(
            "audit",
            actor=actor,
            action=action,
            target=target,
            session_id=session_id,
            success=success,
        )
        return entry

    def get_recent(self, limit: int = 50) -> list[AuditEntry]:
        """Most recent entries first."""
        return list(reversed(self._entries[-limit:]))

    def filter(
        self,
        actor: str | None = None,
        action: str | None = None,
        target: str | None = None,
    ) -> list[AuditEntry]:
        return [
            e for e in self._entries
            if (actor is None or e.actor == actor)
            and (action is None or e.action == action)
            and (target is None or e.target == target)
        ]

    def get_by_session(self, session_id: str) -> list[AuditEntry]:
        return [e for e in self._entries if e.session_id == session_id]

    def count_by_action(self, action: str) -> int:
        return sum(1 for e in self._entries if e.action == action)

    def export_json(self) -> str:
        """Export the full trail as a JSON string."""
        return json.dumps(
            [e.model_dump(mode="json") for e in self._entries],
            indent=2,
            default=str,
        )
