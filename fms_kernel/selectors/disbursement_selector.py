"""
Module: fms_kernel.selectors.disbursement_selector
Responsibility: Read-only DV lookups, filtered listings and per-status
    statistics for registers and dashboards.
Architecture position: Kernel > Selectors.  May import from db/, domain/,
    models/ and selectors/base.py.  MUST NOT import from services/.

Failure modes:
    - get_dv() returns None for an unknown id; listings return [].
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from fms_kernel.db.types import sum_to_money
from fms_kernel.domain.workflow import (
    DisbursementVoucher as DisbursementVoucherDTO,
    DVStatistic,
    DVStatus,
)
from fms_kernel.models.disbursement import DisbursementVoucher
from fms_kernel.selectors.base import BaseSelector


class DisbursementSelector(BaseSelector):
    """Queries over disbursement vouchers."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_dv(self, dv_id: UUID) -> DisbursementVoucherDTO | None:
        row = self.session.get(DisbursementVoucher, dv_id)
        return row.to_dto() if row else None

    def get_by_number(self, dv_no: str) -> DisbursementVoucherDTO | None:
        row = self.session.execute(
            select(DisbursementVoucher).where(DisbursementVoucher.dv_no == dv_no)
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def list_dvs(
        self,
        status: DVStatus | str | None = None,
        fiscal_year: int | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[DisbursementVoucherDTO]:
        """
        DVs newest first.

        Args:
            status: Only DVs in this status.
            fiscal_year: Only DVs of this fiscal year.
            date_from: Inclusive lower bound on ``dv_date``.
            date_to: Inclusive upper bound on ``dv_date``.
            search: Case-insensitive substring of DV number, payee or particulars.
            limit: Maximum number of results.
            offset: Number of results to skip.
        """
        query = select(DisbursementVoucher)
        if status is not None:
            query = query.where(DisbursementVoucher.status == DVStatus(status).value)
        if fiscal_year is not None:
            query = query.where(DisbursementVoucher.fiscal_year == fiscal_year)
        if date_from is not None:
            query = query.where(DisbursementVoucher.dv_date >= date_from)
        if date_to is not None:
            query = query.where(DisbursementVoucher.dv_date <= date_to)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    DisbursementVoucher.dv_no.ilike(pattern),
                    DisbursementVoucher.payee_name.ilike(pattern),
                    DisbursementVoucher.particulars.ilike(pattern),
                )
            )

        query = query.order_by(
            DisbursementVoucher.dv_date.desc(), DisbursementVoucher.dv_no.desc(),
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)

        return [row.to_dto() for row in self.session.execute(query).scalars().all()]

    def statistics(self, fiscal_year: int | None = None) -> list[DVStatistic]:
        """Count and total per status, in lifecycle order.  Absent statuses are omitted."""
        query = select(
            DisbursementVoucher.status,
            func.count(DisbursementVoucher.id),
            func.sum(DisbursementVoucher.amount),
        ).group_by(DisbursementVoucher.status)
        if fiscal_year is not None:
            query = query.where(DisbursementVoucher.fiscal_year == fiscal_year)

        found = {
            status: (count, total)
            for status, count, total in self.session.execute(query).all()
        }
        return [
            DVStatistic(
                status=status,
                count=found[status.value][0],
                total_amount=sum_to_money(found[status.value][1]),
            )
            for status in DVStatus
            if status.value in found
        ]
