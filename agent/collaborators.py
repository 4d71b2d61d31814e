"""Side-channel collaborators of the agent core: learning, investigation, narration.

The core only calls these through ``fire_and_forget`` so that a failing sink
never blocks or fails a chat session or playbook run.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import structlog

from agent.models import ResolutionRecord

logger = structlog.get_logger()


@runtime_checkable
class LearningRecorder(Protocol):
    def record_resolution(
        self,
        incident_id: str | None,
        service: str,
        title: str | None,
        tools_used: list[str],
        success: bool,
        resolution_time_ms: int,
    ) -> None: ...


@runtime_checkable
class InvestigationLauncher(Protocol):
    def investigate_playbook_failure(self, playbook_name: str, service_name: str, output: str) -> None: ...


@runtime_checkable
class Narrator(Protocol):
    def narrate_playbook_triggered(self, playbook_name: str, service_name: str, incident_id: str | None) -> None: ...

    def narrate_playbook_completed(self, playbook_name: str, success: bool, duration_ms: int, output: str) -> None: ...


class InMemoryLearningRecorder:
    """Keeps resolution records in memory for later pattern mining."""

    def __init__(self) -> None:
        self.records: list[ResolutionRecord] = []

    def record_resolution(
        self,
        incident_id: str | None,
        service: str,
        title: str | None,
        tools_used: list[str],
        success: bool,
        resolution_time_ms: int,
    ) -> None:
        record = ResolutionRecord(
            incident_id=incident_id,
            service=service,
            title=title,
            tool_sequence=list(tools_used),
            success=success,
            resolution_time_ms=resolution_time_ms,
        )
        self.records.append(record)
        logger.info(
            "resolution_recorded",
            service=service,
            tools=len(tools_used),
            success=success,
            resolution_time_ms=resolution_time_ms,
        )

    def success_rate(self, service: str) -> float:
        records = [r for r in self.records if r.service == service]
        if not records:
            return 0.0
        return sum(1 for r in records if r.success) / len(records)


class QueuedInvestigationLauncher:
    """Queues investigation requests; a worker elsewhere picks them up."""

    def __init__(self) -> None:
        self.queue: list[dict[str, str]] = []

    def investigate_playbook_failure(self, playbook_name: str, service_name: str, output: str) -> None:
        self.queue.append({
            "playbook_name": playbook_name,
            "service_name": service_name,
            "output": output,
        })
        logger.info("investigation_queued", playbook=playbook_name, service=service_name)


class LogNarrator:
    """Narrates playbook events into the structured log."""

    def narrate_playbook_triggered(self, playbook_name: str, service_name: str, incident_id: str | None) -> None:
        logger.info(
            "narration",
            text=f"Auto-triggering playbook '{playbook_name}' for {service_name}",
            incident_id=incident_id,
        )

    def narrate_playbook_completed(self, playbook_name: str, success: bool, duration_ms: int, output: str) -> None:
        outcome = "succeeded" if success else "failed"
        logger.info(
            "narration",
            text=f"Playbook '{playbook_name}' {outcome} in {duration_ms}ms",
        )


def fire_and_forget(sink: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """Call a side-channel sink, logging and discarding any failure."""
    try:
        fn(*args, **kwargs)
    except Exception as e:
        logger.warning("side_channel_failed", sink=sink, error=str(e))
