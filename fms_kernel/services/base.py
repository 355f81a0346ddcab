"""
BaseService -- abstract base for the kernel's lifecycle services.

Responsibility:
    Provides the common constructor (session, clock, audit sink,
    auto_commit) and the single operation boundary ``_run`` through which
    every public ledger, workflow and payment operation passes.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    BudgetLedgerService, ApprovalWorkflowService, DisbursementService and
    PaymentService extend this class.

Invariants enforced:
    - One public operation is one transaction.  With ``auto_commit=True``
      the boundary commits on success and rolls back on any failure.
      With ``auto_commit=False`` the composing caller owns commit/rollback.
    - Typed kernel errors become ``OperationResult.failure``; they are never
      swallowed and never retried.
    - ``ConfigurationError`` and unexpected exceptions roll back and
      propagate.
    - Audit records are queued during the operation and emitted only after
      it succeeds.  Emission failures never affect the outcome.

Failure modes:
    - Any exception raised by ``session.commit()`` is treated as unexpected:
      rolled back, logged, re-raised.
"""

from __future__ import annotations

import time
from abc import ABC
from typing import Any, Callable, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fms_kernel.db.base import Base
from fms_kernel.domain.clock import Clock, SystemClock
from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.results import OperationResult
from fms_kernel.exceptions import ConfigurationError, FmsKernelError, NotFoundError
from fms_kernel.logging_config import LogContext, get_logger
from fms_kernel.services.audit import (
    AuditRecord,
    AuditSink,
    LoggingAuditSink,
    emit_audit,
)

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC):
    """
    Abstract base class for lifecycle services.

    Contract:
        Subclasses implement each public operation as a private ``work``
        callable (lock, check, act, flush) and pass it to ``_run``.

    Guarantees:
        - Commit on success, rollback on failure (when auto_commit=True).
        - Clock is injectable for deterministic testing.
    """

    _logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink or LoggingAuditSink()
        self._auto_commit = auto_commit
        self._pending_audit: list[AuditRecord] = []

    def _audit(
        self,
        actor: ActorContext,
        action: str,
        entity_type: str,
        entity_id: UUID,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        """Queue an audit record; it is emitted once the operation succeeds."""
        self._pending_audit.append(
            AuditRecord(
                actor_id=actor.user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                timestamp=self._clock.now(),
                old_values=old_values,
                new_values=new_values,
            )
        )

    def _run(
        self,
        operation: str,
        actor: ActorContext | None,
        work: Callable[[], T],
        **log_fields: Any,
    ) -> OperationResult[T]:
        """
        Execute ``work`` as one transaction and wrap its outcome.

        Returns:
            ``OperationResult.success(value)`` or
            ``OperationResult.failure(error)`` for typed kernel errors.

        Raises:
            ConfigurationError: deployment fault; rolled back and propagated.
            Exception: anything unexpected; rolled back and propagated.
        """
        actor_id = str(actor.user_id) if actor is not None else None
        t0 = time.monotonic()
        with LogContext.bind(actor_id=actor_id):
            try:
                value = work()
                if self._auto_commit:
                    self.session.commit()
            except ConfigurationError:
                self._abort()
                self._logger.error(f"{operation}_misconfigured", extra=log_fields, exc_info=True)
                raise
            except FmsKernelError as exc:
                self._abort()
                self._logger.warning(
                    f"{operation}_rejected",
                    extra={**log_fields, "error_code": exc.code, "reason": str(exc)},
                )
                return OperationResult.failure(exc)
            except Exception:
                self._abort()
                self._logger.error(f"{operation}_failed", extra=log_fields, exc_info=True)
                raise

            self._logger.info(
                f"{operation}_completed",
                extra={
                    **log_fields,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            self._emit_pending_audit()
        return OperationResult.success(value)

    def _abort(self) -> None:
        self._pending_audit.clear()
        if self._auto_commit:
            self.session.rollback()

    def _emit_pending_audit(self) -> None:
        records, self._pending_audit = self._pending_audit, []
        for record in records:
            emit_audit(self._audit_sink, record)

    def _lock(self, model: type[ModelT], entity_id: UUID) -> ModelT:
        """``SELECT ... FOR UPDATE`` one row by id, refreshing any cached copy."""
        entity = self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entity is None:
            raise NotFoundError(model.__name__, entity_id)
        return entity
