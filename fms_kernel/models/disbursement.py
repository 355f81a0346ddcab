"""
Module: fms_kernel.models.disbursement
Responsibility: ORM persistence for disbursement vouchers and their
    approval workflow stages.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - dv_no is globally unique (DB unique constraint).
    - UNIQUE(dv_id, stage_order): one stage row per configured position.
    - Status columns are limited to the known values (DB check constraints).
    - At most one pending stage is "current" (the lowest stage_order still
      pending); ApprovalWorkflowService holds the DV row lock while moving it.

Failure modes:
    - IntegrityError on duplicate dv_no or duplicate stage position.

Audit relevance:
    Stage rows are never deleted.  Each resolved stage records the acting
    user, comments and action timestamp, forming the DV's sign-off history.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fms_kernel.db.base import TrackedBase
from fms_kernel.domain.workflow import (
    ApprovalStage,
    DisbursementVoucher as DisbursementVoucherDTO,
    DVStatus,
    PaymentMode,
    StageStatus,
)

_DV_STATUSES = ", ".join(f"'{s.value}'" for s in DVStatus)
_STAGE_STATUSES = ", ".join(f"'{s.value}'" for s in StageStatus)
_PAYMENT_MODES = ", ".join(f"'{m.value}'" for m in PaymentMode)


class DisbursementVoucher(TrackedBase):
    """Document authorizing payment to a payee."""

    __tablename__ = "disbursement_vouchers"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_dv_positive_amount"),
        CheckConstraint(f"status IN ({_DV_STATUSES})", name="ck_dv_valid_status"),
        CheckConstraint(
            f"payment_mode IN ({_PAYMENT_MODES})", name="ck_dv_valid_payment_mode",
        ),
        Index("idx_dv_status", "status"),
        Index("idx_dv_fiscal_year", "fiscal_year"),
        Index("idx_dv_obligation", "obligation_id"),
    )

    dv_no: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    fund_cluster_id: Mapped[UUID] = mapped_column(
        ForeignKey("fund_clusters.id"), nullable=False,
    )
    obligation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("obligations.id"), nullable=True,
    )
    ors_burs_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dv_date: Mapped[date] = mapped_column(nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    payee_name: Mapped[str] = mapped_column(String(255), nullable=False)
    payee_tin: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payee_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    particulars: Mapped[str] = mapped_column(Text, nullable=False)
    responsibility_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
    mfo_pap_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    object_expenditure_id: Mapped[UUID] = mapped_column(
        ForeignKey("objects_of_expenditure.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DVStatus.DRAFT.value,
    )

    def __repr__(self) -> str:
        return f"<DisbursementVoucher {self.dv_no} {self.amount} [{self.status}]>"

    def to_dto(self) -> DisbursementVoucherDTO:
        return DisbursementVoucherDTO(
            id=self.id,
            dv_no=self.dv_no,
            fund_cluster_id=self.fund_cluster_id,
            object_expenditure_id=self.object_expenditure_id,
            fiscal_year=self.fiscal_year,
            dv_date=self.dv_date,
            payee_name=self.payee_name,
            particulars=self.particulars,
            amount=self.amount,
            payment_mode=PaymentMode(self.payment_mode),
            status=DVStatus(self.status),
            obligation_id=self.obligation_id,
            ors_burs_no=self.ors_burs_no,
            payee_tin=self.payee_tin,
            payee_address=self.payee_address,
            responsibility_center=self.responsibility_center,
            mfo_pap_id=self.mfo_pap_id,
        )


class ApprovalWorkflowStage(TrackedBase):
    """One ordered sign-off step of a DV."""

    __tablename__ = "approval_workflow_stages"

    __table_args__ = (
        UniqueConstraint("dv_id", "stage_order", name="uq_workflow_stage_dv_order"),
        CheckConstraint(
            f"status IN ({_STAGE_STATUSES})", name="ck_workflow_stage_valid_status",
        ),
        Index("idx_workflow_stage_status_role", "status", "approver_role_id"),
    )

    dv_id: Mapped[UUID] = mapped_column(
        ForeignKey("disbursement_vouchers.id"), nullable=False,
    )
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    stage_order: Mapped[int] = mapped_column(nullable=False)
    approver_role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id"), nullable=False,
    )
    approver_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StageStatus.PENDING.value,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalWorkflowStage {self.dv_id} {self.stage_order}:{self.stage} [{self.status}]>"

    def to_dto(self) -> ApprovalStage:
        return ApprovalStage(
            id=self.id,
            dv_id=self.dv_id,
            stage=self.stage,
            stage_order=self.stage_order,
            approver_role_id=self.approver_role_id,
            status=StageStatus(self.status),
            approver_user_id=self.approver_user_id,
            comments=self.comments,
            action_date=self.action_date,
        )
