"""Best-effort audit records.

Audit delivery runs on a small thread pool, off the critical path of the
transition that produced it. A failing sink is logged and otherwise ignored:
the transition has already been committed when the record is delivered.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One audit record.

    Attributes:
        action: Lifecycle action that was applied (e.g. "reassign").
        instance_id: Affected routine instance.
        actor_id: Who performed the action.
        timestamp: When the action was committed.
        prior_assignee: Assignee before the action.
        new_assignee: Assignee after the action.
        details: Extra action-specific data (e.g. a cancellation reason).
    """

    action: str
    instance_id: str
    actor_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    prior_assignee: Optional[str] = None
    new_assignee: Optional[str] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "instance_id": self.instance_id,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "prior_assignee": self.prior_assignee,
            "new_assignee": self.new_assignee,
            "details": dict(self.details),
        }


class AuditSink(ABC):
    """Append-only audit event recorder."""

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        pass


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list. Used by tests and the CLI demo."""

    def __init__(self):
        self.events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)


class LoggingAuditSink(AuditSink):
    """Writes events to a logger."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self.logger = audit_logger or logging.getLogger("routineplanner.audit.events")

    def record(self, event: AuditEvent) -> None:
        self.logger.info(
            "%s on %s by %s: %s -> %s",
            event.action,
            event.instance_id,
            event.actor_id,
            event.prior_assignee,
            event.new_assignee,
        )


class AuditDispatcher:
    """Fire-and-forget delivery of audit events to a sink.

    Example:
        >>> dispatcher = AuditDispatcher(InMemoryAuditSink())
        >>> dispatcher.dispatch(event)
        >>> dispatcher.flush()
    """

    def __init__(self, sink: AuditSink, max_workers: int = 1):
        self.sink = sink
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="routineplanner-audit"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def dispatch(self, event: AuditEvent) -> Future:
        """Queue an event for delivery and return immediately."""
        future = self._executor.submit(self._deliver, event)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued events to be delivered."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _deliver(self, event: AuditEvent) -> bool:
        try:
            self.sink.record(event)
        except Exception:
            logger.exception(
                "Audit record for %s on %s could not be written", event.action, event.instance_id
            )
            return False
        return True

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
