"""
Budget Ledger Service (``fms_kernel.services.budget_service``).

Responsibility
--------------
Owns the appropriation -> allotment -> obligation hierarchy: reference data
(fund clusters, objects of expenditure), ceiling-checked creation of
allotments and obligations, obligation approval/rejection, and the
availability figures for an allotment.

Architecture position
---------------------
**Kernel services layer** -- every public method is one transaction and
returns ``OperationResult``.

Invariants enforced
-------------------
* ``sum(allotments) <= appropriation``: the appropriation row is locked
  (``SELECT ... FOR UPDATE``) before the allotment sum is read, so
  concurrent allotments against the same appropriation serialize.
* ``sum(approved obligations) <= allotment``: the allotment row is locked
  before the obligation is checked or approved.  Approval re-validates
  availability; the budget may have been consumed since creation.
* Lock order is always parent (appropriation / allotment) before child
  (obligation).
* No cached totals: availability re-reads committed rows on every call.

Failure modes
-------------
* ``BudgetExceededError``  -- ceiling would be breached; carries the excess.
* ``StateConflictError``   -- obligation not pending.
* ``NotFoundError`` / ``ValidationError`` -- unknown ids, malformed input.

Audit relevance
---------------
Every mutation queues an audit record (``create_allotment``,
``approve_obligation``, ...) emitted after commit.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fms_kernel.db.types import sum_to_money, to_money
from fms_kernel.domain.clock import Clock
from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.ledger import (
    Allotment as AllotmentDTO,
    Appropriation as AppropriationDTO,
    BudgetAvailability,
    FundCluster as FundClusterDTO,
    ObjectOfExpenditure as ObjectOfExpenditureDTO,
    Obligation as ObligationDTO,
    ObligationStatus,
)
from fms_kernel.domain.numbering import NumberingFormats
from fms_kernel.domain.results import OperationResult
from fms_kernel.domain.workflow import DVStatus
from fms_kernel.exceptions import (
    BudgetExceededError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fms_kernel.logging_config import get_logger
from fms_kernel.models.budget import Allotment, Appropriation, Obligation
from fms_kernel.models.disbursement import DisbursementVoucher
from fms_kernel.models.reference import FundCluster, ObjectOfExpenditure
from fms_kernel.services.audit import AuditSink
from fms_kernel.services.base import BaseService
from fms_kernel.services.sequence_service import SerialAllocator

logger = get_logger("services.budget")

MIN_FISCAL_YEAR = 2000
MAX_FISCAL_YEAR = 2100


def require_text(field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value).strip()


def require_amount(field: str, value: Any) -> Decimal:
    """Coerce to two-place money and require it to be positive."""
    try:
        amount = to_money(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(field, str(exc)) from exc
    if amount <= 0:
        raise ValidationError(field, f"must be positive, got {amount}")
    return amount


def require_fiscal_year(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer year, got {value!r}")
    if not MIN_FISCAL_YEAR <= value <= MAX_FISCAL_YEAR:
        raise ValidationError(
            field, f"{value} outside {MIN_FISCAL_YEAR}..{MAX_FISCAL_YEAR}",
        )
    return value


class BudgetLedgerService(BaseService):
    """
    Ceiling-checked appropriation, allotment and obligation operations.

    Contract
    --------
    * Every public method returns ``OperationResult``; callers inspect
      ``result.is_success`` and, on failure, ``result.error``.

    Guarantees
    ----------
    * Session is committed only on success; otherwise rolled back
      (``auto_commit=True``).
    * ORS numbers come from ``SerialAllocator`` in the same transaction.

    Non-goals
    ---------
    * Does NOT authorize ledger operations by role; the calling surface
      decides who may create budget records.
    * Does NOT post to a general ledger.
    """

    _logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        formats: NumberingFormats | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, audit_sink, auto_commit)
        self._allocator = SerialAllocator(session, formats)

    # =========================================================================
    # Reference data
    # =========================================================================

    def create_fund_cluster(
        self, code: str, name: str, actor: ActorContext,
    ) -> OperationResult[FundClusterDTO]:
        def work() -> FundClusterDTO:
            clean_code = require_text("code", code)
            clean_name = require_text("name", name)
            if self._exists(FundCluster, FundCluster.code == clean_code):
                raise ValidationError("code", f"fund cluster {clean_code} already exists")
            cluster = FundCluster(code=clean_code, name=clean_name, created_by_id=actor.user_id)
            self.session.add(cluster)
            self.session.flush()
            self._audit(actor, "create_fund_cluster", "fund_cluster", cluster.id,
                        new_values={"code": clean_code, "name": clean_name})
            return cluster.to_dto()

        return self._run("create_fund_cluster", actor, work, code=code)

    def create_object_of_expenditure(
        self, code: str, name: str, actor: ActorContext, category: str | None = None,
    ) -> OperationResult[ObjectOfExpenditureDTO]:
        def work() -> ObjectOfExpenditureDTO:
            clean_code = require_text("code", code)
            clean_name = require_text("name", name)
            if self._exists(ObjectOfExpenditure, ObjectOfExpenditure.code == clean_code):
                raise ValidationError("code", f"object of expenditure {clean_code} already exists")
            obj = ObjectOfExpenditure(
                code=clean_code, name=clean_name, category=category,
                created_by_id=actor.user_id,
            )
            self.session.add(obj)
            self.session.flush()
            self._audit(actor, "create_object_of_expenditure", "object_of_expenditure", obj.id,
                        new_values={"code": clean_code, "name": clean_name})
            return obj.to_dto()

        return self._run("create_object_of_expenditure", actor, work, code=code)

    # =========================================================================
    # Appropriations and allotments
    # =========================================================================

    def create_appropriation(
        self,
        fund_cluster_id: UUID,
        year: int,
        amount: Decimal,
        reference: str,
        actor: ActorContext,
        description: str | None = None,
    ) -> OperationResult[AppropriationDTO]:
        """Record a legal spending ceiling.  Required-field checks only."""

        def work() -> AppropriationDTO:
            clean_amount = require_amount("amount", amount)
            clean_year = require_fiscal_year("year", year)
            clean_reference = require_text("reference", reference)
            if self.session.get(FundCluster, fund_cluster_id) is None:
                raise NotFoundError("FundCluster", fund_cluster_id)

            appropriation = Appropriation(
                fund_cluster_id=fund_cluster_id,
                year=clean_year,
                amount=clean_amount,
                reference=clean_reference,
                description=description,
                created_by_id=actor.user_id,
            )
            self.session.add(appropriation)
            self.session.flush()
            self._audit(actor, "create_appropriation", "appropriation", appropriation.id,
                        new_values={"year": clean_year, "amount": clean_amount,
                                    "reference": clean_reference})
            return appropriation.to_dto()

        return self._run(
            "create_appropriation", actor, work,
            fund_cluster_id=fund_cluster_id, year=year,
        )

    def create_allotment(
        self,
        appropriation_id: UUID,
        object_of_expenditure_id: UUID,
        amount: Decimal,
        allotment_class: str,
        purpose: str | None,
        actor: ActorContext,
        mfo_pap_id: str | None = None,
    ) -> OperationResult[AllotmentDTO]:
        """
        Carve an allotment out of an appropriation.

        Preconditions:
            ``existing allotments + amount <= appropriation.amount``.

        Postconditions:
            On success the allotment is committed; on BudgetExceededError
            nothing is written and ``error.excess`` is the overrun.
        """

        def work() -> AllotmentDTO:
            clean_amount = require_amount("amount", amount)
            clean_class = require_text("allotment_class", allotment_class)
            if self.session.get(ObjectOfExpenditure, object_of_expenditure_id) is None:
                raise NotFoundError("ObjectOfExpenditure", object_of_expenditure_id)

            appropriation = self._lock(Appropriation, appropriation_id)
            existing = self._allotted_total(appropriation_id)
            if existing + clean_amount > appropriation.amount:
                self._log_exceeded("appropriation", appropriation_id,
                                   appropriation.amount, existing, clean_amount)
                raise BudgetExceededError(
                    ceiling_type="appropriation",
                    ceiling_id=appropriation_id,
                    ceiling_amount=appropriation.amount,
                    committed_amount=existing,
                    requested_amount=clean_amount,
                )

            allotment = Allotment(
                appropriation_id=appropriation_id,
                object_of_expenditure_id=object_of_expenditure_id,
                mfo_pap_id=mfo_pap_id,
                amount=clean_amount,
                allotment_class=clean_class,
                purpose=purpose,
                created_by_id=actor.user_id,
            )
            self.session.add(allotment)
            self.session.flush()
            logger.info(
                "allotment_created",
                extra={
                    "allotment_id": allotment.id,
                    "appropriation_id": appropriation_id,
                    "amount": clean_amount,
                    "allotted_total": existing + clean_amount,
                },
            )
            self._audit(actor, "create_allotment", "allotment", allotment.id,
                        new_values={"appropriation_id": appropriation_id,
                                    "amount": clean_amount,
                                    "allotment_class": clean_class})
            return allotment.to_dto()

        return self._run(
            "create_allotment", actor, work,
            appropriation_id=appropriation_id, amount=amount,
        )

    # =========================================================================
    # Obligations
    # =========================================================================

    def create_obligation(
        self,
        allotment_id: UUID,
        payee: str,
        particulars: str | None,
        amount: Decimal,
        actor: ActorContext,
        obligation_date: date | None = None,
        ors_number: str | None = None,
        burs_number: str | None = None,
        remarks: str | None = None,
    ) -> OperationResult[ObligationDTO]:
        """Record a pending obligation if it fits the unobligated balance."""

        def work() -> ObligationDTO:
            clean_amount = require_amount("amount", amount)
            clean_payee = require_text("payee", payee)

            allotment = self._lock(Allotment, allotment_id)
            self._check_allotment_room(allotment, clean_amount)

            obligation = Obligation(
                allotment_id=allotment_id,
                payee=clean_payee,
                particulars=particulars,
                amount=clean_amount,
                status=ObligationStatus.PENDING.value,
                ors_number=ors_number,
                burs_number=burs_number,
                obligation_date=obligation_date or self._clock.today(),
                remarks=remarks,
                created_by_id=actor.user_id,
            )
            self.session.add(obligation)
            self.session.flush()
            self._audit(actor, "create_obligation", "obligation", obligation.id,
                        new_values={"allotment_id": allotment_id, "payee": clean_payee,
                                    "amount": clean_amount})
            return obligation.to_dto()

        return self._run(
            "create_obligation", actor, work,
            allotment_id=allotment_id, amount=amount,
        )

    def approve_obligation(
        self, obligation_id: UUID, actor: ActorContext,
    ) -> OperationResult[ObligationDTO]:
        """
        Approve a pending obligation, re-validating availability under lock.

        Issues an ORS number when the obligation has none.
        """

        def work() -> ObligationDTO:
            allotment_id = self.session.execute(
                select(Obligation.allotment_id).where(Obligation.id == obligation_id)
            ).scalar_one_or_none()
            if allotment_id is None:
                raise NotFoundError("Obligation", obligation_id)

            # Parent first, then the obligation itself
            allotment = self._lock(Allotment, allotment_id)
            obligation = self._lock(Obligation, obligation_id)
            if obligation.status != ObligationStatus.PENDING.value:
                raise StateConflictError(
                    "Obligation", obligation_id, obligation.status, "approve",
                )
            self._check_allotment_room(allotment, obligation.amount)

            now = self._clock.now()
            obligation.status = ObligationStatus.APPROVED.value
            obligation.approved_by = actor.user_id
            obligation.approved_at = now
            obligation.updated_by_id = actor.user_id
            if obligation.ors_number is None:
                obligation.ors_number = self._issue_ors_number(allotment)
            self.session.flush()

            logger.info(
                "obligation_approved",
                extra={
                    "obligation_id": obligation_id,
                    "allotment_id": allotment_id,
                    "amount": obligation.amount,
                    "ors_number": obligation.ors_number,
                },
            )
            self._audit(actor, "approve_obligation", "obligation", obligation_id,
                        old_values={"status": ObligationStatus.PENDING.value},
                        new_values={"status": obligation.status,
                                    "ors_number": obligation.ors_number})
            return obligation.to_dto()

        return self._run(
            "approve_obligation", actor, work, obligation_id=obligation_id,
        )

    def reject_obligation(
        self, obligation_id: UUID, actor: ActorContext, remarks: str,
    ) -> OperationResult[ObligationDTO]:
        def work() -> ObligationDTO:
            clean_remarks = require_text("remarks", remarks)
            obligation = self._lock(Obligation, obligation_id)
            if obligation.status != ObligationStatus.PENDING.value:
                raise StateConflictError(
                    "Obligation", obligation_id, obligation.status, "reject",
                )
            obligation.status = ObligationStatus.REJECTED.value
            obligation.remarks = clean_remarks
            obligation.rejected_by = actor.user_id
            obligation.rejected_at = self._clock.now()
            obligation.updated_by_id = actor.user_id
            self.session.flush()
            self._audit(actor, "reject_obligation", "obligation", obligation_id,
                        old_values={"status": ObligationStatus.PENDING.value},
                        new_values={"status": obligation.status, "remarks": clean_remarks})
            return obligation.to_dto()

        return self._run(
            "reject_obligation", actor, work, obligation_id=obligation_id,
        )

    # =========================================================================
    # Availability
    # =========================================================================

    def get_budget_availability(
        self, allotment_id: UUID,
    ) -> OperationResult[BudgetAvailability]:
        """
        Ceilings and balances for one allotment, read from committed rows.

        ``disbursement`` is the total of paid DVs that reference an
        obligation of this allotment.
        """

        def work() -> BudgetAvailability:
            row = self.session.execute(
                select(Allotment.amount, Appropriation.amount)
                .join(Appropriation, Appropriation.id == Allotment.appropriation_id)
                .where(Allotment.id == allotment_id)
            ).one_or_none()
            if row is None:
                raise NotFoundError("Allotment", allotment_id)
            allotment_amount, appropriation_amount = row

            return BudgetAvailability.compute(
                allotment_id=allotment_id,
                appropriation=appropriation_amount,
                allotment=allotment_amount,
                obligation=self._approved_total(allotment_id),
                disbursement=self._disbursed_total(allotment_id),
            )

        return self._run("get_budget_availability", None, work, allotment_id=allotment_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _exists(self, model: type, criterion) -> bool:
        return self.session.execute(
            select(model.id).where(criterion)
        ).first() is not None

    def _allotted_total(self, appropriation_id: UUID) -> Decimal:
        return sum_to_money(self.session.execute(
            select(func.sum(Allotment.amount))
            .where(Allotment.appropriation_id == appropriation_id)
        ).scalar())

    def _approved_total(self, allotment_id: UUID) -> Decimal:
        return sum_to_money(self.session.execute(
            select(func.sum(Obligation.amount))
            .where(
                Obligation.allotment_id == allotment_id,
                Obligation.status == ObligationStatus.APPROVED.value,
            )
        ).scalar())

    def _disbursed_total(self, allotment_id: UUID) -> Decimal:
        return sum_to_money(self.session.execute(
            select(func.sum(DisbursementVoucher.amount))
            .join(Obligation, Obligation.id == DisbursementVoucher.obligation_id)
            .where(
                Obligation.allotment_id == allotment_id,
                DisbursementVoucher.status == DVStatus.PAID.value,
            )
        ).scalar())

    def _check_allotment_room(self, allotment: Allotment, amount: Decimal) -> None:
        """Caller must hold the allotment row lock."""
        approved = self._approved_total(allotment.id)
        if amount > allotment.amount - approved:
            self._log_exceeded("allotment", allotment.id, allotment.amount, approved, amount)
            raise BudgetExceededError(
                ceiling_type="allotment",
                ceiling_id=allotment.id,
                ceiling_amount=allotment.amount,
                committed_amount=approved,
                requested_amount=amount,
            )

    def _issue_ors_number(self, allotment: Allotment) -> str:
        year, cluster_code = self.session.execute(
            select(Appropriation.year, FundCluster.code)
            .join(FundCluster, FundCluster.id == Appropriation.fund_cluster_id)
            .where(Appropriation.id == allotment.appropriation_id)
        ).one()
        return self._allocator.allocate_ors_number(
            year, cluster_code, self._clock.today().month,
        )

    def _log_exceeded(
        self,
        ceiling_type: str,
        ceiling_id: UUID,
        ceiling: Decimal,
        committed: Decimal,
        requested: Decimal,
    ) -> None:
        logger.warning(
            "budget_exceeded",
            extra={
                "ceiling_type": ceiling_type,
                "ceiling_id": ceiling_id,
                "ceiling_amount": ceiling,
                "committed_amount": committed,
                "requested_amount": requested,
            },
        )
