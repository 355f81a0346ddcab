"""
Module: fms_kernel.models.budget
Responsibility: ORM persistence for the appropriation -> allotment ->
    obligation hierarchy.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - All monetary columns are Numeric(18, 2); amounts are strictly positive
      (DB check constraint).
    - Obligation status is one of pending/approved/rejected (DB check).
    - Ceiling invariants (sum of allotments <= appropriation, sum of approved
      obligations <= allotment) are cross-row and enforced by
      BudgetLedgerService under a row lock on the parent, not by the schema.

Failure modes:
    - IntegrityError on a non-positive amount or unknown status.

Audit relevance:
    Appropriations are never decremented and nothing here is deleted.
    Obligation approval/rejection records the actor and timestamp.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fms_kernel.db.base import TrackedBase
from fms_kernel.domain.ledger import (
    Allotment as AllotmentDTO,
    Appropriation as AppropriationDTO,
    Obligation as ObligationDTO,
    ObligationStatus,
)


class Appropriation(TrackedBase):
    """Legal spending ceiling for a fund cluster and year."""

    __tablename__ = "appropriations"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_appropriations_positive_amount"),
        Index("idx_appropriation_fund_year", "fund_cluster_id", "year"),
    )

    fund_cluster_id: Mapped[UUID] = mapped_column(
        ForeignKey("fund_clusters.id"), nullable=False,
    )
    year: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Appropriation {self.reference} FY{self.year} {self.amount}>"

    def to_dto(self) -> AppropriationDTO:
        return AppropriationDTO(
            id=self.id,
            fund_cluster_id=self.fund_cluster_id,
            year=self.year,
            amount=self.amount,
            reference=self.reference,
            description=self.description,
        )


class Allotment(TrackedBase):
    """Sub-ceiling under an appropriation."""

    __tablename__ = "allotments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_allotments_positive_amount"),
        Index("idx_allotment_appropriation", "appropriation_id"),
        Index("idx_allotment_object_expenditure", "object_of_expenditure_id"),
    )

    appropriation_id: Mapped[UUID] = mapped_column(
        ForeignKey("appropriations.id"), nullable=False,
    )
    object_of_expenditure_id: Mapped[UUID] = mapped_column(
        ForeignKey("objects_of_expenditure.id"), nullable=False,
    )
    mfo_pap_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    allotment_class: Mapped[str] = mapped_column(String(50), nullable=False)
    purpose: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Allotment {self.id} {self.allotment_class} {self.amount}>"

    def to_dto(self) -> AllotmentDTO:
        return AllotmentDTO(
            id=self.id,
            appropriation_id=self.appropriation_id,
            object_of_expenditure_id=self.object_of_expenditure_id,
            amount=self.amount,
            allotment_class=self.allotment_class,
            purpose=self.purpose,
            mfo_pap_id=self.mfo_pap_id,
        )


class Obligation(TrackedBase):
    """
    A commitment against an allotment.

    Guarantees:
        - Created ``pending``; leaves pending exactly once, to ``approved``
          or ``rejected``.
    """

    __tablename__ = "obligations"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_obligations_positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_obligations_valid_status",
        ),
        Index("idx_obligation_allotment_status", "allotment_id", "status"),
        Index("idx_obligation_ors_number", "ors_number"),
    )

    allotment_id: Mapped[UUID] = mapped_column(
        ForeignKey("allotments.id"), nullable=False,
    )
    payee: Mapped[str] = mapped_column(String(255), nullable=False)
    particulars: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ObligationStatus.PENDING.value,
    )
    ors_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    burs_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    obligation_date: Mapped[date] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Obligation {self.id} {self.amount} [{self.status}]>"

    def to_dto(self) -> ObligationDTO:
        return ObligationDTO(
            id=self.id,
            allotment_id=self.allotment_id,
            payee=self.payee,
            amount=self.amount,
            status=ObligationStatus(self.status),
            obligation_date=self.obligation_date,
            particulars=self.particulars,
            ors_number=self.ors_number,
            burs_number=self.burs_number,
            remarks=self.remarks,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
        )
