"""
Module: fms_kernel.models.sequence
Responsibility: Counter rows backing the serial allocator, and bounded
    number series (official receipts).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One SequenceCounter row per scope key (unique).  The row is the sole
      source of truth for the next number; documents are never scanned for
      a maximum.
    - NumberSeries: start_number <= end_number and
      start_number - 1 <= current_number <= end_number (DB check).
      current_number is the last number issued.

Failure modes:
    - IntegrityError on a duplicate series code or an out-of-range
      current_number.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from fms_kernel.db.base import Base, TrackedBase


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row holds the last value issued for one numbering scope.  Rows are
    created on first use and incremented with an atomic
    ``UPDATE ... RETURNING``.
    """

    __tablename__ = "sequence_counters"

    # Deterministic scope key, e.g. "document_type=dv|fiscal_year=2025"
    scope_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.scope_key}={self.current_value}>"


class NumberSeries(TrackedBase):
    """Pre-printed bounded range of numbers, e.g. an official receipt booklet."""

    __tablename__ = "number_series"

    __table_args__ = (
        CheckConstraint("start_number > 0", name="ck_number_series_positive_start"),
        CheckConstraint(
            "start_number <= end_number", name="ck_number_series_valid_range",
        ),
        CheckConstraint(
            "current_number >= start_number - 1 AND current_number <= end_number",
            name="ck_number_series_current_in_range",
        ),
    )

    series_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    start_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def remaining(self) -> int:
        return self.end_number - self.current_number

    def __repr__(self) -> str:
        return (
            f"<NumberSeries {self.series_code} "
            f"{self.current_number}/{self.start_number}..{self.end_number}>"
        )
