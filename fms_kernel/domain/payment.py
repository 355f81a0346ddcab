"""
Payment domain types (``fms_kernel.domain.payment``).

Pure value objects for the payment lifecycle: payment types, statuses and
the only legal status transitions.

    pending -> issued -> cleared      (cleared is terminal; DV becomes paid)
    pending | issued -> cancelled     (never once cleared)
    issued -> stale                   (manual timeout marking)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentType(str, Enum):
    CHECK_MDS = "check_mds"
    CHECK_COMMERCIAL = "check_commercial"
    ADA = "ada"
    CASH = "cash"

    @property
    def is_check(self) -> bool:
        return self in CHECK_PAYMENT_TYPES


CHECK_PAYMENT_TYPES: frozenset[PaymentType] = frozenset({
    PaymentType.CHECK_MDS,
    PaymentType.CHECK_COMMERCIAL,
})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ISSUED = "issued"
    CLEARED = "cleared"
    CANCELLED = "cancelled"
    STALE = "stale"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.ISSUED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.ISSUED: frozenset({
        PaymentStatus.CLEARED,
        PaymentStatus.CANCELLED,
        PaymentStatus.STALE,
    }),
    PaymentStatus.CLEARED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.STALE: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


@dataclass(frozen=True)
class Payment:
    id: UUID
    dv_id: UUID
    payment_type: PaymentType
    payment_date: date
    amount: Decimal
    status: PaymentStatus
    check_no: str | None = None
    bank_name: str | None = None
    bank_account_no: str | None = None
    ada_reference: str | None = None
    ada_issued_date: date | None = None
    cleared_date: date | None = None
    received_by: str | None = None
    received_date: date | None = None
    or_no: str | None = None
    or_date: date | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class PaymentCreated:
    id: UUID
    check_no: str | None = None


@dataclass(frozen=True)
class PaymentStatistics:
    """Counts per status plus the total of every non-cancelled payment."""

    counts: dict[PaymentStatus, int]
    total_amount: Decimal

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())
