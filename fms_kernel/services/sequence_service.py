"""
SerialAllocator -- scoped, gapless document numbering via atomic counter rows.

Responsibility:
    Issues strictly increasing integers per numbering scope and renders
    them as DV, check, ORS and official-receipt numbers.  Bounded series
    (pre-printed receipt booklets) fail loudly when used up.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DisbursementService (DV numbers), PaymentService (check
    numbers) and BudgetLedgerService (ORS numbers).

Invariants enforced:
    - One counter row per scope key.  Allocation is a single
      ``UPDATE ... SET current_value = current_value + 1 ... RETURNING``;
      the row lock taken by the UPDATE serializes concurrent allocations
      for the same scope and leaves other scopes untouched.
    - Documents are never scanned for a maximum.  The counter row is the
      sole source of truth.
    - Transactional: an allocation becomes visible when the caller's
      transaction commits.  Rollback returns the number.
    - A bounded series never wraps: past ``end_number`` it raises
      ``SeriesExhaustedError``.

Failure modes:
    - SeriesExhaustedError: series exhausted or deactivated.
    - NotFoundError: unknown series code.
    - ValidationError: malformed series bounds.
"""

from __future__ import annotations

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.numbering import (
    DEFAULT_FORMATS,
    NumberingFormats,
    SerialScope,
    check_scope,
    dv_scope,
    format_check_number,
    format_dv_number,
    format_ors_number,
    format_receipt_number,
    ors_scope,
)
from fms_kernel.exceptions import NotFoundError, SeriesExhaustedError, ValidationError
from fms_kernel.logging_config import get_logger
from fms_kernel.models.sequence import NumberSeries, SequenceCounter

logger = get_logger("services.sequence")


class SerialAllocator:
    """
    Service for issuing gapless document numbers.

    Contract:
        Accepts a ``SerialScope`` and returns the next integer for it.

    Guarantees:
        - Within a scope, committed numbers are 1, 2, 3, ... with no gaps
          and no reuse, under any number of concurrent callers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        allocator = SerialAllocator(session)
        n = allocator.allocate(SerialScope.of(fiscal_year=2025))
        session.commit()
    """

    def __init__(self, session: Session, formats: NumberingFormats | None = None):
        self._session = session
        self._formats = formats or DEFAULT_FORMATS

    @property
    def formats(self) -> NumberingFormats:
        return self._formats

    # =========================================================================
    # Scoped counters
    # =========================================================================

    def allocate(self, scope: SerialScope) -> int:
        """
        Issue the next number for ``scope``.

        Postconditions:
            - Returns an integer > 0, exactly one greater than the last
              committed value for this scope.
            - The counter row stays locked until the transaction completes.
        """
        key = scope.key
        self._ensure_counter(key)

        value = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.scope_key == key)
            .values(current_value=SequenceCounter.current_value + 1)
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        ).scalar_one()

        logger.debug(
            "serial_allocated",
            extra={"scope_key": key, "value": value},
        )
        return value

    def current_value(self, scope: SerialScope) -> int:
        """Last number issued for ``scope`` (0 if none)."""
        value = self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.scope_key == scope.key)
        ).scalar_one_or_none()
        return value or 0

    def reset(self, scope: SerialScope, value: int = 0) -> None:
        """
        Force the counter for ``scope`` to ``value``.

        For tests and data migration only; never called by the lifecycle
        services.
        """
        if value < 0:
            raise ValidationError("value", "counter value cannot be negative")
        key = scope.key
        self._ensure_counter(key)
        self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.scope_key == key)
            .values(current_value=value)
            .execution_options(synchronize_session=False)
        )
        logger.warning("serial_counter_reset", extra={"scope_key": key, "value": value})

    def _ensure_counter(self, key: str) -> None:
        """Create the counter row for ``key`` if it does not exist yet."""
        dialect = self._session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            else:
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            self._session.execute(
                dialect_insert(SequenceCounter)
                .values(scope_key=key, current_value=0)
                .on_conflict_do_nothing(index_elements=["scope_key"])
            )
            return

        # Other backends: insert inside a savepoint and tolerate the race
        exists = self._session.execute(
            select(SequenceCounter.id).where(SequenceCounter.scope_key == key)
        ).scalar_one_or_none()
        if exists is not None:
            return
        savepoint = self._session.begin_nested()
        try:
            self._session.execute(
                insert(SequenceCounter).values(scope_key=key, current_value=0)
            )
            savepoint.commit()
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"scope_key": key})
            savepoint.rollback()

    # =========================================================================
    # Formatted document numbers
    # =========================================================================

    def allocate_dv_number(self, fiscal_year: int, month: int) -> str:
        """DV number, gapless per fiscal year, e.g. ``0001-03-2025``."""
        serial = self.allocate(dv_scope(fiscal_year))
        return format_dv_number(serial, month, fiscal_year, self._formats)

    def allocate_check_number(
        self, fiscal_year: int, fund_cluster_code: str, payment_type: str,
    ) -> str:
        """Check number, gapless per (fiscal year, fund cluster, payment type)."""
        serial = self.allocate(check_scope(fiscal_year, fund_cluster_code, payment_type))
        return format_check_number(serial, fiscal_year, self._formats)

    def allocate_ors_number(
        self, fiscal_year: int, fund_cluster_code: str, month: int,
    ) -> str:
        """Obligation request number, gapless per (fiscal year, fund cluster)."""
        serial = self.allocate(ors_scope(fiscal_year, fund_cluster_code))
        return format_ors_number(serial, fiscal_year, month, fund_cluster_code, self._formats)

    # =========================================================================
    # Bounded series
    # =========================================================================

    def create_series(
        self,
        series_code: str,
        start_number: int,
        end_number: int,
        actor: ActorContext,
    ) -> NumberSeries:
        """Register a bounded series.  Nothing has been issued from it yet."""
        if not series_code or not series_code.strip():
            raise ValidationError("series_code", "must not be empty")
        if start_number < 1:
            raise ValidationError("start_number", "must be at least 1")
        if end_number < start_number:
            raise ValidationError("end_number", "must not be below start_number")
        existing = self._session.execute(
            select(NumberSeries.id).where(NumberSeries.series_code == series_code)
        ).scalar_one_or_none()
        if existing is not None:
            raise ValidationError("series_code", f"series {series_code} already exists")

        series = NumberSeries(
            series_code=series_code,
            start_number=start_number,
            end_number=end_number,
            current_number=start_number - 1,
            is_active=True,
            created_by_id=actor.user_id,
        )
        self._session.add(series)
        self._session.flush()
        logger.info(
            "number_series_created",
            extra={
                "series_code": series_code,
                "start_number": start_number,
                "end_number": end_number,
            },
        )
        return series

    def allocate_from_series(self, series_code: str) -> str:
        """
        Issue the next number of a bounded series, formatted.

        Raises:
            NotFoundError: unknown series.
            SeriesExhaustedError: series deactivated or past its end number.
        """
        number = self._session.execute(
            update(NumberSeries)
            .where(
                NumberSeries.series_code == series_code,
                NumberSeries.is_active.is_(True),
                NumberSeries.current_number < NumberSeries.end_number,
            )
            .values(current_number=NumberSeries.current_number + 1)
            .returning(NumberSeries.current_number)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

        if number is None:
            series = self._session.execute(
                select(NumberSeries).where(NumberSeries.series_code == series_code)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if series is None:
                raise NotFoundError("NumberSeries", series_code)
            reason = "inactive" if not series.is_active else "exhausted"
            logger.warning(
                "number_series_exhausted",
                extra={"series_code": series_code, "end_number": series.end_number, "reason": reason},
            )
            raise SeriesExhaustedError(series_code, series.end_number, reason=reason)

        logger.debug(
            "series_number_allocated",
            extra={"series_code": series_code, "value": number},
        )
        return format_receipt_number(number, series_code, self._formats)

    def deactivate_series(self, series_code: str) -> None:
        updated = self._session.execute(
            update(NumberSeries)
            .where(NumberSeries.series_code == series_code)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not updated:
            raise NotFoundError("NumberSeries", series_code)
        logger.info("number_series_deactivated", extra={"series_code": series_code})
