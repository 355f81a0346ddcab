"""
Budget ledger value objects (``fms_kernel.domain.ledger``).

Pure DTOs and arithmetic for the appropriation -> allotment -> obligation
hierarchy.  The ledger service gathers the raw figures under lock; this
module derives balances from them.

    unobligated_balance = allotment - sum(approved obligations)
    available_balance   = unobligated_balance - disbursement

All inputs and outputs are two-place ``Decimal`` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fms_kernel.db.types import ZERO, round_money


class ObligationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class BudgetAvailability:
    """Snapshot of one allotment's ceilings and balances."""

    allotment_id: UUID
    appropriation: Decimal
    allotment: Decimal
    obligation: Decimal
    disbursement: Decimal
    unobligated_balance: Decimal
    available_balance: Decimal

    @classmethod
    def compute(
        cls,
        allotment_id: UUID,
        appropriation: Decimal,
        allotment: Decimal,
        obligation: Decimal,
        disbursement: Decimal,
    ) -> BudgetAvailability:
        unobligated = round_money(allotment - obligation)
        return cls(
            allotment_id=allotment_id,
            appropriation=round_money(appropriation),
            allotment=round_money(allotment),
            obligation=round_money(obligation),
            disbursement=round_money(disbursement),
            unobligated_balance=unobligated,
            available_balance=round_money(unobligated - disbursement),
        )


def utilization_rate(allotment: Decimal, obligation: Decimal) -> Decimal:
    """Obligations as a percentage of allotments, two places.  Zero allotment gives 0."""
    if allotment == ZERO:
        return ZERO
    return round_money(obligation / allotment * Decimal(100))


@dataclass(frozen=True)
class BudgetSummary:
    """Allotted vs. obligated totals for one grouping (fund cluster, object code, or all)."""

    key: str
    appropriation: Decimal | None
    allotment: Decimal
    obligation: Decimal

    @property
    def unallotted(self) -> Decimal | None:
        """None for groupings that have no single appropriation (object codes)."""
        if self.appropriation is None:
            return None
        return round_money(self.appropriation - self.allotment)

    @property
    def unobligated(self) -> Decimal:
        return round_money(self.allotment - self.obligation)

    @property
    def utilization_rate(self) -> Decimal:
        return utilization_rate(self.allotment, self.obligation)


# ---------------------------------------------------------------------------
# Ledger entity DTOs (returned by BudgetLedgerService and the budget selector)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FundCluster:
    id: UUID
    code: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class ObjectOfExpenditure:
    id: UUID
    code: str
    name: str
    category: str | None = None


@dataclass(frozen=True)
class Appropriation:
    """Legal spending ceiling for one fund cluster and year.  Never decremented."""

    id: UUID
    fund_cluster_id: UUID
    year: int
    amount: Decimal
    reference: str
    description: str | None = None


@dataclass(frozen=True)
class Allotment:
    """Sub-ceiling of an appropriation for one object of expenditure."""

    id: UUID
    appropriation_id: UUID
    object_of_expenditure_id: UUID
    amount: Decimal
    allotment_class: str
    purpose: str | None = None
    mfo_pap_id: str | None = None


@dataclass(frozen=True)
class Obligation:
    """A commitment of funds against an allotment."""

    id: UUID
    allotment_id: UUID
    payee: str
    amount: Decimal
    status: ObligationStatus
    obligation_date: date
    particulars: str | None = None
    ors_number: str | None = None
    burs_number: str | None = None
    remarks: str | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
