"""
Disbursement Service (``fms_kernel.services.disbursement_service``).

Responsibility
--------------
Creates disbursement vouchers (DV number from the serial allocator,
workflow stages from the approval engine), edits drafts, and cancels DVs.

Architecture position
---------------------
**Kernel services layer** -- orchestrates ``SerialAllocator`` and
``ApprovalWorkflowService`` inside its own transaction (the workflow
service runs with ``auto_commit=False``).

Invariants enforced
-------------------
* DV numbers are gapless per fiscal year and globally unique.
* After submission the DV status is derived from the workflow's actual
  first pending stage, never from a constant.
* Only drafts are editable; ``dv_no``, ``status``, ``fiscal_year`` and
  ``fund_cluster_id`` never change through ``update_dv``.
* Paid and cancelled DVs cannot be cancelled.  Cancelling skips the
  remaining pending stages and cancels any pending or issued payment.
* The live DVs (not cancelled or rejected) linked to one obligation never
  total more than the obligation.  The obligation row is locked while the
  total is checked.

Failure modes
-------------
* ``StateConflictError``  -- edit after draft, cancel of paid/cancelled DV,
  obligation not approved.
* ``BudgetExceededError`` -- linked DVs would exceed the obligation
  (``ceiling_type="obligation"``).
* ``ValidationError`` / ``NotFoundError`` -- malformed input, unknown ids.
* ``RoleNotProvisionedError`` -- propagates (deployment fault).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fms_kernel.db.types import sum_to_money
from fms_kernel.domain.clock import Clock
from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.ledger import ObligationStatus
from fms_kernel.domain.numbering import NumberingFormats
from fms_kernel.domain.payment import PaymentStatus
from fms_kernel.domain.results import OperationResult
from fms_kernel.domain.workflow import (
    DV_NON_CANCELLABLE_STATUSES,
    DisbursementVoucher as DisbursementVoucherDTO,
    DVCreated,
    DVStatus,
    PaymentMode,
    WorkflowDefinition,
    dv_status_after,
)
from fms_kernel.exceptions import (
    BudgetExceededError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fms_kernel.logging_config import LogContext, get_logger
from fms_kernel.models.budget import Obligation
from fms_kernel.models.disbursement import DisbursementVoucher
from fms_kernel.models.payment import Payment
from fms_kernel.models.reference import FundCluster, ObjectOfExpenditure
from fms_kernel.services.approval_service import ApprovalWorkflowService
from fms_kernel.services.audit import AuditSink
from fms_kernel.services.base import BaseService
from fms_kernel.services.budget_service import (
    require_amount,
    require_fiscal_year,
    require_text,
)
from fms_kernel.services.sequence_service import SerialAllocator

logger = get_logger("services.disbursement")

# Fields a draft DV may change through update_dv
UPDATABLE_DV_FIELDS: frozenset[str] = frozenset({
    "payee_name",
    "payee_tin",
    "payee_address",
    "particulars",
    "responsibility_center",
    "mfo_pap_id",
    "object_expenditure_id",
    "obligation_id",
    "ors_burs_no",
    "dv_date",
    "amount",
    "payment_mode",
})


def parse_payment_mode(value: Any) -> PaymentMode:
    try:
        return PaymentMode(value)
    except ValueError:
        raise ValidationError(
            "payment_mode", f"{value!r} not one of {[m.value for m in PaymentMode]}",
        ) from None


class DisbursementService(BaseService):
    """
    DV creation, draft editing and cancellation.

    Guarantees
    ----------
    * Session is committed only on success; otherwise rolled back.
    * DV number, DV row and workflow stages are written in one transaction.
    """

    _logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        workflow: WorkflowDefinition | None = None,
        formats: NumberingFormats | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, audit_sink, auto_commit)
        self._allocator = SerialAllocator(session, formats)
        self._approvals = ApprovalWorkflowService(
            session,
            clock=self._clock,
            audit_sink=self._audit_sink,
            workflow=workflow,
            auto_commit=False,
        )

    def create_dv(
        self,
        fund_cluster_id: UUID,
        object_expenditure_id: UUID,
        payee_name: str,
        particulars: str,
        amount: Decimal,
        payment_mode: PaymentMode | str,
        actor: ActorContext,
        fiscal_year: int | None = None,
        dv_date: date | None = None,
        obligation_id: UUID | None = None,
        ors_burs_no: str | None = None,
        payee_tin: str | None = None,
        payee_address: str | None = None,
        responsibility_center: str | None = None,
        mfo_pap_id: str | None = None,
        submit: bool = True,
    ) -> OperationResult[DVCreated]:
        """
        Create a DV and, unless ``submit=False``, start its workflow.

        Postconditions:
            - ``dv_no`` is the next serial of the fiscal year's DV scope.
            - Submitted DVs are in ``pending_<first stage>`` with every
              stage pending; unsubmitted DVs stay ``draft`` with no stages.
        """

        def work() -> DVCreated:
            clean_amount = require_amount("amount", amount)
            clean_payee = require_text("payee_name", payee_name)
            clean_particulars = require_text("particulars", particulars)
            mode = parse_payment_mode(payment_mode)
            if self.session.get(FundCluster, fund_cluster_id) is None:
                raise NotFoundError("FundCluster", fund_cluster_id)
            if self.session.get(ObjectOfExpenditure, object_expenditure_id) is None:
                raise NotFoundError("ObjectOfExpenditure", object_expenditure_id)
            if obligation_id is not None:
                self._require_approved_obligation(obligation_id, clean_amount)

            voucher_date = dv_date or self._clock.today()
            year = require_fiscal_year(
                "fiscal_year", fiscal_year if fiscal_year is not None else voucher_date.year,
            )
            dv_no = self._allocator.allocate_dv_number(year, voucher_date.month)

            dv = DisbursementVoucher(
                dv_no=dv_no,
                fund_cluster_id=fund_cluster_id,
                obligation_id=obligation_id,
                ors_burs_no=ors_burs_no,
                dv_date=voucher_date,
                fiscal_year=year,
                payee_name=clean_payee,
                payee_tin=payee_tin,
                payee_address=payee_address,
                particulars=clean_particulars,
                responsibility_center=responsibility_center,
                mfo_pap_id=mfo_pap_id,
                object_expenditure_id=object_expenditure_id,
                amount=clean_amount,
                payment_mode=mode.value,
                status=DVStatus.DRAFT.value,
                created_by_id=actor.user_id,
            )
            self.session.add(dv)
            self.session.flush()
            if submit:
                self._start_workflow(dv, actor)

            logger.info(
                "dv_created",
                extra={"dv_id": dv.id, "dv_no": dv_no, "amount": clean_amount,
                       "dv_status": dv.status},
            )
            self._audit(actor, "create_dv", "disbursement_voucher", dv.id,
                        new_values={"dv_no": dv_no, "amount": clean_amount,
                                    "payee_name": clean_payee, "status": dv.status})
            return DVCreated(id=dv.id, dv_no=dv_no, status=DVStatus(dv.status))

        return self._run(
            "create_dv", actor, work,
            fund_cluster_id=fund_cluster_id, amount=amount,
        )

    def submit_dv(self, dv_id: UUID, actor: ActorContext) -> OperationResult[DisbursementVoucherDTO]:
        """Start the workflow of a draft DV."""

        def work() -> DisbursementVoucherDTO:
            dv = self._lock(DisbursementVoucher, dv_id)
            if dv.status != DVStatus.DRAFT.value:
                raise StateConflictError("DisbursementVoucher", dv_id, dv.status, "submit")
            self._start_workflow(dv, actor)
            self._audit(actor, "submit_dv", "disbursement_voucher", dv_id,
                        old_values={"status": DVStatus.DRAFT.value},
                        new_values={"status": dv.status})
            return dv.to_dto()

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("submit_dv", actor, work, dv_id=dv_id)

    def update_dv(
        self,
        dv_id: UUID,
        fields: Mapping[str, Any],
        actor: ActorContext,
    ) -> OperationResult[DisbursementVoucherDTO]:
        """Edit a draft DV.  Unknown or immutable fields are rejected."""

        def work() -> DisbursementVoucherDTO:
            unknown = sorted(set(fields) - UPDATABLE_DV_FIELDS)
            if unknown:
                raise ValidationError(", ".join(unknown), "not an editable DV field")
            if not fields:
                raise ValidationError("fields", "nothing to update")

            dv = self._lock(DisbursementVoucher, dv_id)
            if dv.status != DVStatus.DRAFT.value:
                raise StateConflictError("DisbursementVoucher", dv_id, dv.status, "update")

            values = self._clean_update(dict(fields))
            obligation_id = values.get("obligation_id", dv.obligation_id)
            if obligation_id is not None and ("obligation_id" in values or "amount" in values):
                self._require_approved_obligation(
                    obligation_id, values.get("amount", dv.amount), exclude_dv_id=dv_id,
                )
            old_values = {name: getattr(dv, name) for name in values}
            for name, value in values.items():
                setattr(dv, name, value)
            dv.updated_by_id = actor.user_id
            self.session.flush()

            self._audit(actor, "update_dv", "disbursement_voucher", dv_id,
                        old_values=old_values, new_values=values)
            return dv.to_dto()

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("update_dv", actor, work, dv_id=dv_id)

    def cancel_dv(
        self,
        dv_id: UUID,
        actor: ActorContext,
        reason: str | None = None,
    ) -> OperationResult[DisbursementVoucherDTO]:
        """
        Cancel a DV that is not yet paid.

        Outstanding pending stages are marked skipped.  A pending or issued
        payment on the DV is cancelled with it, in the same transaction.
        """

        def work() -> DisbursementVoucherDTO:
            dv = self._lock(DisbursementVoucher, dv_id)
            if DVStatus(dv.status) in DV_NON_CANCELLABLE_STATUSES:
                raise StateConflictError("DisbursementVoucher", dv_id, dv.status, "cancel")

            # DV before payment, as in PaymentService
            outstanding = self.session.execute(
                select(Payment)
                .where(
                    Payment.dv_id == dv_id,
                    Payment.status.in_(
                        [PaymentStatus.PENDING.value, PaymentStatus.ISSUED.value]
                    ),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()
            for payment in outstanding:
                old_payment_status = payment.status
                payment.status = PaymentStatus.CANCELLED.value
                payment.remarks = reason or f"DV {dv.dv_no} cancelled"
                payment.updated_by_id = actor.user_id
                self._audit(actor, "cancel_payment", "payment", payment.id,
                            old_values={"status": old_payment_status},
                            new_values={"status": payment.status, "reason": payment.remarks})

            skipped = self._approvals.skip_pending_stages(dv_id, actor)
            old_status = dv.status
            dv.status = DVStatus.CANCELLED.value
            dv.updated_by_id = actor.user_id
            self.session.flush()

            logger.info(
                "dv_cancelled",
                extra={
                    "previous_status": old_status,
                    "skipped_stages": skipped,
                    "cancelled_payments": len(outstanding),
                },
            )
            self._audit(actor, "cancel_dv", "disbursement_voucher", dv_id,
                        old_values={"status": old_status},
                        new_values={"status": dv.status, "reason": reason})
            return dv.to_dto()

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("cancel_dv", actor, work, dv_id=dv_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _start_workflow(self, dv: DisbursementVoucher, actor: ActorContext) -> None:
        self._approvals.initialize_workflow(dv.id, actor)
        first = self._approvals.get_current_stage(dv.id)
        dv.status = dv_status_after(first.stage if first else None).value
        dv.updated_by_id = actor.user_id
        self.session.flush()

    def _require_approved_obligation(
        self,
        obligation_id: UUID,
        amount: Decimal,
        exclude_dv_id: UUID | None = None,
    ) -> None:
        """
        Lock the obligation and check ``amount`` fits what is left of it.

        Every live DV (not cancelled or rejected) linked to the obligation
        counts against it; ``exclude_dv_id`` is the DV being edited.
        """
        obligation = self._lock(Obligation, obligation_id)
        if obligation.status != ObligationStatus.APPROVED.value:
            raise StateConflictError(
                "Obligation", obligation_id, obligation.status, "disburse against",
            )

        query = select(func.sum(DisbursementVoucher.amount)).where(
            DisbursementVoucher.obligation_id == obligation_id,
            DisbursementVoucher.status.notin_(
                [DVStatus.CANCELLED.value, DVStatus.REJECTED.value]
            ),
        )
        if exclude_dv_id is not None:
            query = query.where(DisbursementVoucher.id != exclude_dv_id)
        linked = sum_to_money(self.session.execute(query).scalar())

        if linked + amount > obligation.amount:
            logger.warning(
                "budget_exceeded",
                extra={
                    "ceiling_type": "obligation",
                    "ceiling_id": obligation_id,
                    "ceiling_amount": obligation.amount,
                    "committed_amount": linked,
                    "requested_amount": amount,
                },
            )
            raise BudgetExceededError(
                ceiling_type="obligation",
                ceiling_id=obligation_id,
                ceiling_amount=obligation.amount,
                committed_amount=linked,
                requested_amount=amount,
            )

    def _clean_update(self, values: dict[str, Any]) -> dict[str, Any]:
        if "amount" in values:
            values["amount"] = require_amount("amount", values["amount"])
        if "payment_mode" in values:
            values["payment_mode"] = parse_payment_mode(values["payment_mode"]).value
        for name in ("payee_name", "particulars"):
            if name in values:
                values[name] = require_text(name, values[name])
        if "object_expenditure_id" in values:
            if self.session.get(ObjectOfExpenditure, values["object_expenditure_id"]) is None:
                raise NotFoundError("ObjectOfExpenditure", values["object_expenditure_id"])
        if "dv_date" in values and not isinstance(values["dv_date"], date):
            raise ValidationError("dv_date", "must be a date")
        return values
