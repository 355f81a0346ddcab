"""
Module: fms_kernel.models.payment
Responsibility: ORM persistence for payments against approved DVs and the
    check-disbursement reconciliation stub written when a check clears.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Payment status and type are limited to known values (DB checks).
    - At most one non-cancelled payment per DV.  PaymentService checks this
      under the DV row lock; a partial unique index backs it in the schema.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from fms_kernel.db.base import TrackedBase
from fms_kernel.domain.payment import (
    Payment as PaymentDTO,
    PaymentStatus,
    PaymentType,
)

_PAYMENT_STATUSES = ", ".join(f"'{s.value}'" for s in PaymentStatus)
_PAYMENT_TYPES = ", ".join(f"'{t.value}'" for t in PaymentType)


class Payment(TrackedBase):
    """Settlement of a disbursement voucher."""

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_positive_amount"),
        CheckConstraint(
            f"status IN ({_PAYMENT_STATUSES})", name="ck_payments_valid_status",
        ),
        CheckConstraint(
            f"payment_type IN ({_PAYMENT_TYPES})", name="ck_payments_valid_type",
        ),
        Index(
            "ix_payments_one_active_per_dv",
            "dv_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("idx_payment_status", "status"),
        Index("idx_payment_check_no", "check_no"),
    )

    dv_id: Mapped[UUID] = mapped_column(
        ForeignKey("disbursement_vouchers.id"), nullable=False,
    )
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    check_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ada_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ada_issued_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value,
    )
    cleared_date: Mapped[date | None] = mapped_column(nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    received_date: Mapped[date | None] = mapped_column(nullable=True)
    or_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    or_date: Mapped[date | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.payment_type} {self.amount} [{self.status}]>"

    def to_dto(self) -> PaymentDTO:
        return PaymentDTO(
            id=self.id,
            dv_id=self.dv_id,
            payment_type=PaymentType(self.payment_type),
            payment_date=self.payment_date,
            amount=self.amount,
            status=PaymentStatus(self.status),
            check_no=self.check_no,
            bank_name=self.bank_name,
            bank_account_no=self.bank_account_no,
            ada_reference=self.ada_reference,
            ada_issued_date=self.ada_issued_date,
            cleared_date=self.cleared_date,
            received_by=self.received_by,
            received_date=self.received_date,
            or_no=self.or_no,
            or_date=self.or_date,
            remarks=self.remarks,
        )


class CheckDisbursementRecord(TrackedBase):
    """Reconciliation stub for a cleared check.  Balances are filled in later."""

    __tablename__ = "check_disbursement_records"

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payments.id"), nullable=False, unique=True,
    )
    fund_cluster_id: Mapped[UUID] = mapped_column(
        ForeignKey("fund_clusters.id"), nullable=False,
    )
    record_date: Mapped[date] = mapped_column(nullable=False)
    nca_balance: Mapped[Decimal | None] = mapped_column(nullable=True)
    bank_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<CheckDisbursementRecord payment={self.payment_id} {self.record_date}>"
