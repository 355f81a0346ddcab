"""
Payment Service (``fms_kernel.services.payment_service``).

Responsibility
--------------
Settles approved DVs: creates the payment (check number from the serial
allocator for check types), issues it to the payee, clears it (DV becomes
paid), cancels it, or marks it stale.

Architecture position
---------------------
**Kernel services layer** -- every public method is one transaction and
returns ``OperationResult``.

Invariants enforced
-------------------
* Payments are created only for ``approved`` DVs, for exactly the DV
  amount, and only while no other non-cancelled payment exists.  The DV
  row is locked for the duration of the check.
* Status changes follow ``PAYMENT_TRANSITIONS``:
  pending -> issued -> cleared; pending|issued -> cancelled;
  issued -> stale.
* Clearing marks the DV ``paid`` and, for check payments, writes a
  ``CheckDisbursementRecord`` reconciliation stub.
* Lock order is DV before payment.

Failure modes
-------------
* ``StateConflictError`` -- DV not approved, payment already active,
  illegal status transition.
* ``ValidationError`` -- amount mismatch, missing required fields.
* ``NotFoundError`` -- unknown DV or payment.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fms_kernel.db.types import to_money
from fms_kernel.domain.clock import Clock
from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.numbering import NumberingFormats
from fms_kernel.domain.payment import (
    Payment as PaymentDTO,
    PaymentCreated,
    PaymentStatus,
    PaymentType,
    can_transition,
)
from fms_kernel.domain.results import OperationResult
from fms_kernel.domain.workflow import DVStatus
from fms_kernel.exceptions import NotFoundError, StateConflictError, ValidationError
from fms_kernel.logging_config import LogContext, get_logger
from fms_kernel.models.disbursement import DisbursementVoucher
from fms_kernel.models.payment import CheckDisbursementRecord, Payment
from fms_kernel.models.reference import FundCluster
from fms_kernel.services.audit import AuditSink
from fms_kernel.services.base import BaseService
from fms_kernel.services.budget_service import require_text
from fms_kernel.services.sequence_service import SerialAllocator

logger = get_logger("services.payment")


def parse_payment_type(value: Any) -> PaymentType:
    try:
        return PaymentType(value)
    except ValueError:
        raise ValidationError(
            "payment_type", f"{value!r} not one of {[t.value for t in PaymentType]}",
        ) from None


class PaymentService(BaseService):
    """
    Payment lifecycle against approved disbursement vouchers.

    Guarantees
    ----------
    * Session is committed only on success; otherwise rolled back.
    * A check number is consumed only if the payment row is committed.
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

    def create_payment(
        self,
        dv_id: UUID,
        payment_type: PaymentType | str,
        amount: Decimal,
        actor: ActorContext,
        payment_date: date | None = None,
        bank_name: str | None = None,
        bank_account_no: str | None = None,
        ada_reference: str | None = None,
        ada_issued_date: date | None = None,
        remarks: str | None = None,
    ) -> OperationResult[PaymentCreated]:
        """
        Create the payment for an approved DV.

        Preconditions:
            - DV status is ``approved``.
            - No non-cancelled payment exists for the DV.
            - ``amount`` equals the DV amount to the cent.
        """

        def work() -> PaymentCreated:
            kind = parse_payment_type(payment_type)
            try:
                clean_amount = to_money(amount)
            except (TypeError, ValueError) as exc:
                raise ValidationError("amount", str(exc)) from exc

            dv = self._lock(DisbursementVoucher, dv_id)
            if dv.status != DVStatus.APPROVED.value:
                raise StateConflictError(
                    "DisbursementVoucher", dv_id, dv.status, "create payment for",
                )
            active = self.session.execute(
                select(Payment.id, Payment.status).where(
                    Payment.dv_id == dv_id,
                    Payment.status != PaymentStatus.CANCELLED.value,
                )
            ).first()
            if active is not None:
                raise StateConflictError(
                    "DisbursementVoucher", dv_id, dv.status, "create payment for",
                    detail=f"payment {active.id} is already {active.status}",
                )
            if clean_amount != dv.amount:
                raise ValidationError(
                    "amount", f"{clean_amount} does not equal DV amount {dv.amount}",
                )

            check_no = None
            if kind.is_check:
                cluster_code = self.session.execute(
                    select(FundCluster.code).where(FundCluster.id == dv.fund_cluster_id)
                ).scalar_one()
                check_no = self._allocator.allocate_check_number(
                    dv.fiscal_year, cluster_code, kind.value,
                )

            payment = Payment(
                dv_id=dv_id,
                payment_type=kind.value,
                payment_date=payment_date or self._clock.today(),
                amount=clean_amount,
                check_no=check_no,
                bank_name=bank_name,
                bank_account_no=bank_account_no,
                ada_reference=ada_reference,
                ada_issued_date=ada_issued_date,
                status=PaymentStatus.PENDING.value,
                remarks=remarks,
                created_by_id=actor.user_id,
            )
            self.session.add(payment)
            self.session.flush()

            logger.info(
                "payment_created",
                extra={"payment_id": payment.id, "payment_type": kind.value,
                       "amount": clean_amount, "check_no": check_no},
            )
            self._audit(actor, "create_payment", "payment", payment.id,
                        new_values={"dv_id": dv_id, "payment_type": kind.value,
                                    "amount": clean_amount, "check_no": check_no})
            return PaymentCreated(id=payment.id, check_no=check_no)

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("create_payment", actor, work, dv_id=dv_id)

    def issue_payment(
        self,
        payment_id: UUID,
        actor: ActorContext,
        received_by: str,
        received_date: date,
        or_no: str | None = None,
        or_date: date | None = None,
        remarks: str | None = None,
    ) -> OperationResult[PaymentDTO]:
        """Hand the payment to the payee.  Requires ``pending``."""

        def work() -> PaymentDTO:
            clean_received_by = require_text("received_by", received_by)
            if received_date is None:
                raise ValidationError("received_date", "is required")
            payment = self._lock(Payment, payment_id)
            self._transition(payment, PaymentStatus.ISSUED, "issue")

            payment.received_by = clean_received_by
            payment.received_date = received_date
            payment.or_no = or_no
            payment.or_date = or_date
            if remarks is not None:
                payment.remarks = remarks
            payment.updated_by_id = actor.user_id
            self.session.flush()

            self._audit(actor, "issue_payment", "payment", payment_id,
                        old_values={"status": PaymentStatus.PENDING.value},
                        new_values={"status": payment.status,
                                    "received_by": clean_received_by, "or_no": or_no})
            return payment.to_dto()

        return self._run("issue_payment", actor, work, payment_id=payment_id)

    def clear_payment(
        self,
        payment_id: UUID,
        actor: ActorContext,
        clear_date: date | None = None,
    ) -> OperationResult[PaymentDTO]:
        """
        Mark an issued payment cleared and its DV paid.

        Check payments also get a check-disbursement reconciliation stub.
        """

        def work() -> PaymentDTO:
            dv_id = self.session.execute(
                select(Payment.dv_id).where(Payment.id == payment_id)
            ).scalar_one_or_none()
            if dv_id is None:
                raise NotFoundError("Payment", payment_id)

            dv = self._lock(DisbursementVoucher, dv_id)
            payment = self._lock(Payment, payment_id)
            if dv.status != DVStatus.APPROVED.value:
                raise StateConflictError(
                    "DisbursementVoucher", dv_id, dv.status, "mark paid",
                )
            self._transition(payment, PaymentStatus.CLEARED, "clear")

            cleared_on = clear_date or self._clock.today()
            payment.cleared_date = cleared_on
            payment.updated_by_id = actor.user_id
            dv.status = DVStatus.PAID.value
            dv.updated_by_id = actor.user_id

            if PaymentType(payment.payment_type).is_check:
                self.session.add(
                    CheckDisbursementRecord(
                        payment_id=payment_id,
                        fund_cluster_id=dv.fund_cluster_id,
                        record_date=cleared_on,
                        created_by_id=actor.user_id,
                    )
                )
            self.session.flush()

            logger.info(
                "payment_cleared",
                extra={"payment_id": payment_id, "dv_id": dv_id,
                       "amount": payment.amount, "cleared_date": cleared_on},
            )
            self._audit(actor, "clear_payment", "payment", payment_id,
                        old_values={"status": PaymentStatus.ISSUED.value},
                        new_values={"status": payment.status,
                                    "cleared_date": cleared_on})
            self._audit(actor, "mark_dv_paid", "disbursement_voucher", dv_id,
                        old_values={"status": DVStatus.APPROVED.value},
                        new_values={"status": DVStatus.PAID.value})
            return payment.to_dto()

        return self._run("clear_payment", actor, work, payment_id=payment_id)

    def cancel_payment(
        self,
        payment_id: UUID,
        actor: ActorContext,
        reason: str,
    ) -> OperationResult[PaymentDTO]:
        """Cancel a pending or issued payment.  The DV can then be paid anew."""

        def work() -> PaymentDTO:
            clean_reason = require_text("reason", reason)
            payment = self._lock(Payment, payment_id)
            old_status = payment.status
            self._transition(payment, PaymentStatus.CANCELLED, "cancel")
            payment.remarks = clean_reason
            payment.updated_by_id = actor.user_id
            self.session.flush()

            self._audit(actor, "cancel_payment", "payment", payment_id,
                        old_values={"status": old_status},
                        new_values={"status": payment.status, "reason": clean_reason})
            return payment.to_dto()

        return self._run("cancel_payment", actor, work, payment_id=payment_id)

    def mark_stale(
        self,
        payment_id: UUID,
        actor: ActorContext,
    ) -> OperationResult[PaymentDTO]:
        """
        Mark an issued, uncashed payment stale.

        Stale is terminal: the payment cannot be cleared or cancelled, and
        because it still counts as the DV's active payment no replacement
        can be created.  The only way forward for the DV is ``cancel_dv``;
        a fresh DV is then raised for the payee.
        """

        def work() -> PaymentDTO:
            payment = self._lock(Payment, payment_id)
            self._transition(payment, PaymentStatus.STALE, "mark stale")
            payment.updated_by_id = actor.user_id
            self.session.flush()

            self._audit(actor, "mark_payment_stale", "payment", payment_id,
                        old_values={"status": PaymentStatus.ISSUED.value},
                        new_values={"status": payment.status})
            return payment.to_dto()

        return self._run("mark_stale", actor, work, payment_id=payment_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(self, payment: Payment, target: PaymentStatus, action: str) -> None:
        current = PaymentStatus(payment.status)
        if not can_transition(current, target):
            raise StateConflictError("Payment", payment.id, current.value, action)
        payment.status = target.value
