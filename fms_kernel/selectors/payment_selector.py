"""
Module: fms_kernel.selectors.payment_selector
Responsibility: Read-only payment registers: lookups, filtered listings,
    the list of approved DVs still awaiting payment, and status statistics.
Architecture position: Kernel > Selectors.  May import from db/, domain/,
    models/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - A DV is "payable" while it is ``approved`` and has no payment other
      than cancelled ones.
    - The statistics total excludes cancelled payments.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from fms_kernel.db.types import ZERO, sum_to_money
from fms_kernel.domain.payment import (
    Payment as PaymentDTO,
    PaymentStatistics,
    PaymentStatus,
    PaymentType,
)
from fms_kernel.domain.workflow import DisbursementVoucher as DisbursementVoucherDTO
from fms_kernel.domain.workflow import DVStatus
from fms_kernel.models.disbursement import DisbursementVoucher
from fms_kernel.models.payment import Payment
from fms_kernel.selectors.base import BaseSelector


class PaymentSelector(BaseSelector):
    """Queries over payments and payable DVs."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_payment(self, payment_id: UUID) -> PaymentDTO | None:
        row = self.session.get(Payment, payment_id)
        return row.to_dto() if row else None

    def payments_for_dv(self, dv_id: UUID) -> list[PaymentDTO]:
        """Every payment ever made against ``dv_id``, oldest first."""
        rows = self.session.execute(
            select(Payment)
            .where(Payment.dv_id == dv_id)
            .order_by(Payment.created_at, Payment.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def list_payments(
        self,
        status: PaymentStatus | str | None = None,
        payment_types: Iterable[PaymentType | str] | None = None,
        fiscal_year: int | None = None,
        search: str | None = None,
    ) -> list[PaymentDTO]:
        """
        Payments newest first.

        ``fiscal_year`` filters on the DV's fiscal year.  ``search`` matches
        check number, DV number or payee name, case-insensitively.
        """
        query = select(Payment).join(
            DisbursementVoucher, DisbursementVoucher.id == Payment.dv_id,
        )
        if status is not None:
            query = query.where(Payment.status == PaymentStatus(status).value)
        if payment_types is not None:
            wanted = sorted({PaymentType(t).value for t in payment_types})
            query = query.where(Payment.payment_type.in_(wanted))
        if fiscal_year is not None:
            query = query.where(DisbursementVoucher.fiscal_year == fiscal_year)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Payment.check_no.ilike(pattern),
                    DisbursementVoucher.dv_no.ilike(pattern),
                    DisbursementVoucher.payee_name.ilike(pattern),
                )
            )
        rows = self.session.execute(
            query.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def pending_payables(self) -> list[DisbursementVoucherDTO]:
        """Approved DVs with no active (non-cancelled) payment, by DV number."""
        active = (
            select(Payment.id)
            .where(
                Payment.dv_id == DisbursementVoucher.id,
                Payment.status != PaymentStatus.CANCELLED.value,
            )
            .exists()
        )
        rows = self.session.execute(
            select(DisbursementVoucher)
            .where(
                DisbursementVoucher.status == DVStatus.APPROVED.value,
                ~active,
            )
            .order_by(DisbursementVoucher.dv_no)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def statistics(self, fiscal_year: int | None = None) -> PaymentStatistics:
        """Counts for every status (zero included) and the non-cancelled total."""
        query = (
            select(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .join(DisbursementVoucher, DisbursementVoucher.id == Payment.dv_id)
            .group_by(Payment.status)
        )
        if fiscal_year is not None:
            query = query.where(DisbursementVoucher.fiscal_year == fiscal_year)

        counts = {status: 0 for status in PaymentStatus}
        total = ZERO
        for status, count, amount in self.session.execute(query).all():
            counts[PaymentStatus(status)] = count
            if status != PaymentStatus.CANCELLED.value:
                total += sum_to_money(amount)
        return PaymentStatistics(counts=counts, total_amount=total)
