"""
Audit sink interface -- fire-and-forget emission of audit records.

Responsibility:
    Defines the record shape the kernel hands to the external audit store
    and the ``emit_audit`` helper every service uses to deliver it.

Architecture position:
    Kernel > Services -- outbound port.  Audit-log storage and formatting
    are external; the kernel ships a logging sink and an in-memory sink.

Invariants enforced:
    - Emission never raises.  A failing sink is logged and discarded; it
      never rolls back or blocks the primary transaction.
    - Records are emitted only after the primary transaction has committed
      (see ``BaseService``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from fms_kernel.logging_config import get_logger

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditRecord:
    """One state change, as seen by the external audit store."""

    actor_id: UUID
    action: str
    entity_type: str
    entity_id: UUID
    timestamp: datetime
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


@runtime_checkable
class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


class LoggingAuditSink:
    """Default sink: one structured log line per record."""

    def __init__(self) -> None:
        self._logger = get_logger("audit")

    def record(self, record: AuditRecord) -> None:
        self._logger.info(
            "audit_record",
            extra={
                "actor_id": record.actor_id,
                "action": record.action,
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "old_values": record.old_values,
                "new_values": record.new_values,
                "audit_timestamp": record.timestamp,
            },
        )


class InMemoryAuditSink:
    """Collects records in a list.  Used by tests and local tooling."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> list[str]:
        return [r.action for r in self.records]


def emit_audit(sink: AuditSink, record: AuditRecord) -> None:
    """Deliver ``record``; any sink failure is logged and dropped."""
    try:
        sink.record(record)
    except Exception:
        logger.warning(
            "audit_emit_failed",
            extra={
                "action": record.action,
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
            },
            exc_info=True,
        )
