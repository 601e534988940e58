"""Best-effort audit records for lifecycle transitions."""

from routineplanner.audit.dispatcher import (
    AuditDispatcher,
    AuditEvent,
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
)

__all__ = [
    "AuditDispatcher",
    "AuditEvent",
    "AuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
]
