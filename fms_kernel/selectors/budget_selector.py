"""
Module: fms_kernel.selectors.budget_selector
Responsibility: Read-only budget reports: appropriation / allotment /
    obligation totals per fund cluster, per object of expenditure, and for
    the whole fiscal year, plus filtered listings of the ledger rows.
Architecture position: Kernel > Selectors.  May import from db/, domain/,
    models/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Only ``approved`` obligations count toward obligation totals.
    - Totals are computed at query time from the ledger rows; no balance
      is stored anywhere.
    - Each total is aggregated in its own query so that joins never
      multiply a row's amount.

Failure modes:
    - Returns zero totals (never None) when nothing matches.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fms_kernel.db.types import sum_to_money
from fms_kernel.domain.ledger import (
    Allotment as AllotmentDTO,
    Appropriation as AppropriationDTO,
    BudgetSummary,
    Obligation as ObligationDTO,
    ObligationStatus,
)
from fms_kernel.models.budget import Allotment, Appropriation, Obligation
from fms_kernel.models.reference import FundCluster, ObjectOfExpenditure
from fms_kernel.selectors.base import BaseSelector


class BudgetSelector(BaseSelector):
    """
    Budget utilization reports over the appropriation hierarchy.

    Non-goals:
        - Rendering (spreadsheets, PDFs); callers format the DTOs.
        - Disbursement totals; see ``BudgetLedgerService.get_budget_availability``.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # =========================================================================
    # Summaries
    # =========================================================================

    def summary_by_fund_cluster(self, fund_cluster_id: UUID, year: int) -> BudgetSummary:
        """Totals for one fund cluster's appropriations in ``year``."""
        code = self.session.execute(
            select(FundCluster.code).where(FundCluster.id == fund_cluster_id)
        ).scalar_one_or_none()
        return BudgetSummary(
            key=code or str(fund_cluster_id),
            appropriation=self._appropriation_total(year, fund_cluster_id),
            allotment=self._allotment_total(year, fund_cluster_id),
            obligation=self._obligation_total(year, fund_cluster_id),
        )

    def overall_summary(self, year: int) -> BudgetSummary:
        """Totals across every fund cluster for ``year``."""
        return BudgetSummary(
            key="all",
            appropriation=self._appropriation_total(year),
            allotment=self._allotment_total(year),
            obligation=self._obligation_total(year),
        )

    def by_object_of_expenditure(self, year: int) -> list[BudgetSummary]:
        """
        Allotment and obligation totals per object of expenditure code.

        Only objects with at least one allotment in ``year`` appear.  The
        appropriation figure is None: appropriations are not split by object.
        """
        allotted = self.session.execute(
            select(ObjectOfExpenditure.code, func.sum(Allotment.amount))
            .join(Allotment, Allotment.object_of_expenditure_id == ObjectOfExpenditure.id)
            .join(Appropriation, Appropriation.id == Allotment.appropriation_id)
            .where(Appropriation.year == year)
            .group_by(ObjectOfExpenditure.code)
        ).all()
        obligated = dict(
            self.session.execute(
                select(ObjectOfExpenditure.code, func.sum(Obligation.amount))
                .join(Allotment, Allotment.object_of_expenditure_id == ObjectOfExpenditure.id)
                .join(Appropriation, Appropriation.id == Allotment.appropriation_id)
                .join(Obligation, Obligation.allotment_id == Allotment.id)
                .where(
                    Appropriation.year == year,
                    Obligation.status == ObligationStatus.APPROVED.value,
                )
                .group_by(ObjectOfExpenditure.code)
            ).all()
        )
        return [
            BudgetSummary(
                key=code,
                appropriation=None,
                allotment=sum_to_money(total),
                obligation=sum_to_money(obligated.get(code)),
            )
            for code, total in sorted(allotted, key=lambda row: row[0])
        ]

    # =========================================================================
    # Listings
    # =========================================================================

    def list_appropriations(
        self,
        year: int | None = None,
        fund_cluster_id: UUID | None = None,
    ) -> list[AppropriationDTO]:
        query = select(Appropriation)
        if year is not None:
            query = query.where(Appropriation.year == year)
        if fund_cluster_id is not None:
            query = query.where(Appropriation.fund_cluster_id == fund_cluster_id)
        rows = self.session.execute(
            query.order_by(Appropriation.year.desc(), Appropriation.reference)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def list_allotments(self, appropriation_id: UUID | None = None) -> list[AllotmentDTO]:
        query = select(Allotment)
        if appropriation_id is not None:
            query = query.where(Allotment.appropriation_id == appropriation_id)
        rows = self.session.execute(
            query.order_by(Allotment.created_at, Allotment.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def list_obligations(
        self,
        status: ObligationStatus | str | None = None,
        allotment_id: UUID | None = None,
    ) -> list[ObligationDTO]:
        """Obligations newest first, optionally filtered by status or allotment."""
        query = select(Obligation)
        if status is not None:
            query = query.where(Obligation.status == ObligationStatus(status).value)
        if allotment_id is not None:
            query = query.where(Obligation.allotment_id == allotment_id)
        rows = self.session.execute(
            query.order_by(Obligation.obligation_date.desc(), Obligation.created_at.desc())
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Aggregates
    # =========================================================================

    def _appropriation_total(self, year: int, fund_cluster_id: UUID | None = None) -> Decimal:
        query = select(func.sum(Appropriation.amount)).where(Appropriation.year == year)
        if fund_cluster_id is not None:
            query = query.where(Appropriation.fund_cluster_id == fund_cluster_id)
        return sum_to_money(self.session.execute(query).scalar_one())

    def _allotment_total(self, year: int, fund_cluster_id: UUID | None = None) -> Decimal:
        query = (
            select(func.sum(Allotment.amount))
            .join(Appropriation, Appropriation.id == Allotment.appropriation_id)
            .where(Appropriation.year == year)
        )
        if fund_cluster_id is not None:
            query = query.where(Appropriation.fund_cluster_id == fund_cluster_id)
        return sum_to_money(self.session.execute(query).scalar_one())

    def _obligation_total(self, year: int, fund_cluster_id: UUID | None = None) -> Decimal:
        query = (
            select(func.sum(Obligation.amount))
            .join(Allotment, Allotment.id == Obligation.allotment_id)
            .join(Appropriation, Appropriation.id == Allotment.appropriation_id)
            .where(
                Appropriation.year == year,
                Obligation.status == ObligationStatus.APPROVED.value,
            )
        )
        if fund_cluster_id is not None:
            query = query.where(Appropriation.fund_cluster_id == fund_cluster_id)
        return sum_to_money(self.session.execute(query).scalar_one())
