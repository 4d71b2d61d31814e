"""Human approval workflow for tools that require confirmation."""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import timedelta
from typing import Any, Protocol

import structlog

from agent.errors import ApprovalAlreadyRespondedError, ApprovalNotFoundError
from agent.models import AgentResponse, ApprovalRequest, ApprovalStatus, utcnow
from monitoring.audit import AuditTrail
from monitoring.metrics import sentinel_approvals_requested_total, sentinel_approvals_responded_total
from protocols.events import EventBus
from storage.repositories import ApprovalRepository

logger = structlog.get_logger()


class ResumeHandler(Protocol):
    async def resume_after_approval(self, session_id: str, tool_name: str) -> AgentResponse: ...


class ApprovalWorkflow:
    """Tracks approval requests per (tool, session) and resumes sessions once approved.

    At most one request per (tool, session) is pending at a time; asking again
    returns the pending one.
    """

    def __init__(
        self,
        repository: ApprovalRepository | None = None,
        events: EventBus | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self._repository = repository or ApprovalRepository()
        self._events = events or EventBus()
        self._audit = audit or AuditTrail()
        self._lock = threading.Lock()
        self._resume_handler: ResumeHandler | None = None
        self._resume_tasks: set[asyncio.Task[AgentResponse]] = set()

    def set_resume_handler(self, handler: ResumeHandler) -> None:
        self._resume_handler = handler

    @property
    def resume_tasks(self) -> set[asyncio.Task[AgentResponse]]:
        """Resume tasks still in flight."""
        return set(self._resume_tasks)

    def request_approval(
        self,
        tool_name: str,
        parameters: dict[str, Any] | None,
        session_id: str | None,
        incident_id: str | None = None,
    ) -> ApprovalRequest:
        params_json = json.dumps(parameters or {}, default=str, sort_keys=True)

        with self._lock:
            if session_id is not None:
                for existing in self._repository.find_by_session_and_status(session_id, ApprovalStatus.PENDING):
                    if existing.tool_name == tool_name:
                        logger.debug(
                            "approval_reused",
                            tool=tool_name,
                            session_id=session_id,
                            approval_id=existing.id,
                        )
                        return existing

            request = ApprovalRequest(
                id=self._repository.new_id(),
                tool_name=tool_name,
                parameters=params_json,
                session_id=session_id,
                incident_id=incident_id,
            )
            self._repository.save(request)

        logger.info("approval_requested", tool=tool_name, session_id=session_id, approval_id=request.id)
        sentinel_approvals_requested_total.labels(tool_name=tool_name).inc()

        self._events.broadcast("approval.requested", {
            "approval_id": request.id,
            "tool_name": tool_name,
            "session_id": session_id or "",
            "incident_id": incident_id or "",
            "parameters": params_json,
        })
        self._audit.log(
            "system", "APPROVAL_REQUESTED", tool_name,
            {"approval_id": request.id, "session_id": session_id or ""},
            session_id=session_id,
        )
        return request

    def respond(
        self,
        approval_id: str,
        approved: bool,
        responded_by: str | None = None,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Approve or deny a pending request.

        On approval of a session-bound request the session is resumed in the
        background and its reply is broadcast as ``agent.response``.

        Raises:
            ApprovalNotFoundError: Unknown approval id.
            ApprovalAlreadyRespondedError: The request is no longer pending.
        """
        with self._lock:
            request = self._repository.find_by_id(approval_id)
            if request is None:
                raise ApprovalNotFoundError(approval_id)
            if request.status != ApprovalStatus.PENDING:
                raise ApprovalAlreadyRespondedError(approval_id, request.status.value)

            request.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED
            request.responded_at = utcnow()
            request.responded_by = responded_by
            request.reason = reason
            self._repository.save(request)

        action = "APPROVAL_GRANTED" if approved else "APPROVAL_DENIED"
        logger.info(
            "approval_responded",
            decision=request.status.value,
            tool=request.tool_name,
            responded_by=responded_by,
            approval_id=approval_id,
        )
        sentinel_approvals_responded_total.labels(decision=request.status.value).inc()

        self._events.broadcast("approval.responded", {
            "approval_id": approval_id,
            "tool_name": request.tool_name,
            "approved": approved,
            "responded_by": responded_by or "unknown",
            "session_id": request.session_id or "",
        })
        self._audit.log(
            responded_by or "user", action, request.tool_name,
            {"approval_id": approval_id, "reason": reason or ""},
            session_id=request.session_id,
        )

        if approved and request.session_id is not None:
            self._schedule_resume(request.session_id, request.tool_name)

        return request

    def _schedule_resume(self, session_id: str, tool_name: str) -> None:
        if self._resume_handler is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("resume_skipped", session_id=session_id, reason="no running loop")
            return

        logger.info("session_resume_scheduled", session_id=session_id, tool=tool_name)
        task = loop.create_task(self._resume_handler.resume_after_approval(session_id, tool_name))
        self._resume_tasks.add(task)
        task.add_done_callback(self._on_resumed)

    def _on_resumed(self, task: asyncio.Task[AgentResponse]) -> None:
        self._resume_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("resume_broadcast_failed", error=str(exc))
            return
        response = task.result()
        if response.response:
            self._events.broadcast("agent.response", {
                "session_id": response.session_id,
                "response": response.response,
                "tools_used": response.tools_used,
                "iterations": response.iterations,
            })

    def get(self, approval_id: str) -> ApprovalRequest:
        request = self._repository.find_by_id(approval_id)
        if request is None:
            raise ApprovalNotFoundError(approval_id)
        return request

    def get_pending(self) -> list[ApprovalRequest]:
        return self._repository.find_by_status(ApprovalStatus.PENDING)

    def get_by_session(self, session_id: str) -> list[ApprovalRequest]:
        return self._repository.find_by_session(session_id)

    def expire_stale(self, max_age_seconds: float) -> list[ApprovalRequest]:
        """Mark pending requests older than *max_age_seconds* as expired."""
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        expired: list[ApprovalRequest] = []
        with self._lock:
            for request in self._repository.find_by_status(ApprovalStatus.PENDING):
                if request.requested_at < cutoff:
                    request.status = ApprovalStatus.EXPIRED
                    request.responded_at = utcnow()
                    self._repository.save(request)
                    expired.append(request)
        if expired:
            logger.info("approvals_expired", count=len(expired))
        return expired
