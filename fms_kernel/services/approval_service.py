"""
fms_kernel.services.approval_service -- DV approval workflow engine.

Responsibility:
    Creates the ordered stage rows of a DV's workflow, moves the current
    stage forward on approval, halts the workflow on rejection, and answers
    "what is waiting on me" and "who signed what".

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Stage names and role bindings arrive as a ``WorkflowDefinition``; the
    kernel never reads configuration files itself.

Invariants enforced:
    - All configured stages are inserted ``pending`` in one flush.
    - The current stage is the lowest ``stage_order`` still pending.  Only
      it may be approved or rejected, so resolved stages have strictly
      increasing order.
    - Every transition runs under the DV row lock (``SELECT ... FOR
      UPDATE``); two approvers cannot both act on "the current stage".
    - The DV status is derived from the next pending stage
      (``pending_<stage>``) or ``approved`` when none remain.
    - Rejection marks the remaining pending stages ``skipped`` and the DV
      ``rejected``; nothing can be approved afterwards.
    - Stage role ids are resolved by name.  A missing role raises
      ``RoleNotProvisionedError``.

Failure modes:
    - PermissionDeniedError: actor lacks the stage role and administrator.
    - StateConflictError: DV not awaiting approval, or workflow resolved.
    - ValidationError: rejection without comments.
    - NotFoundError: unknown DV.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from fms_kernel.domain.clock import Clock
from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.results import OperationResult
from fms_kernel.domain.workflow import (
    DEFAULT_WORKFLOW,
    ApprovalStage,
    DVStatus,
    PendingApproval,
    StageStatus,
    StageTransition,
    WorkflowDefinition,
    dv_status_after,
)
from fms_kernel.exceptions import (
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from fms_kernel.logging_config import LogContext, get_logger
from fms_kernel.models.disbursement import ApprovalWorkflowStage, DisbursementVoucher
from fms_kernel.models.reference import Role
from fms_kernel.services.audit import AuditSink
from fms_kernel.services.base import BaseService
from fms_kernel.services.role_registry import RoleRegistry

logger = get_logger("services.approval")


class ApprovalWorkflowService(BaseService):
    """Multi-stage sign-off state machine for disbursement vouchers."""

    _logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        workflow: WorkflowDefinition | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, audit_sink, auto_commit)
        self._workflow = workflow or DEFAULT_WORKFLOW
        self._roles = RoleRegistry(session)

    @property
    def workflow(self) -> WorkflowDefinition:
        return self._workflow

    # =========================================================================
    # Initialization (composed into DV creation; flush only)
    # =========================================================================

    def initialize_workflow(self, dv_id: UUID, actor: ActorContext) -> list[ApprovalStage]:
        """
        Insert every configured stage for ``dv_id`` as pending.

        Flushes but never commits; DisbursementService owns the transaction.

        Raises:
            RoleNotProvisionedError: a stage role is missing.
            StateConflictError: the DV already has stage rows.
        """
        role_ids = self._roles.resolve(s.role_name for s in self._workflow.stages)

        existing = self.session.execute(
            select(func.count(ApprovalWorkflowStage.id))
            .where(ApprovalWorkflowStage.dv_id == dv_id)
        ).scalar_one()
        if existing:
            raise StateConflictError(
                "DisbursementVoucher", dv_id, None, "initialize workflow",
                detail=f"{existing} stages already exist",
            )

        rows = [
            ApprovalWorkflowStage(
                dv_id=dv_id,
                stage=stage.name,
                stage_order=stage.order,
                approver_role_id=role_ids[stage.role_name],
                status=StageStatus.PENDING.value,
                created_by_id=actor.user_id,
            )
            for stage in self._workflow.stages
        ]
        self.session.add_all(rows)
        self.session.flush()
        logger.info(
            "workflow_initialized",
            extra={"dv_id": dv_id, "stage_count": len(rows)},
        )
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Transitions
    # =========================================================================

    def approve_stage(
        self,
        dv_id: UUID,
        actor: ActorContext,
        comments: str | None = None,
    ) -> OperationResult[StageTransition]:
        """
        Approve the DV's current stage and advance its status.

        Postconditions:
            - The acted stage is ``approved`` with actor and timestamp.
            - DV status is ``pending_<next stage>`` or ``approved``.
        """

        def work() -> StageTransition:
            dv, stage = self._lock_current_stage(dv_id, "approve")
            self._authorize(stage, actor)

            stage.status = StageStatus.APPROVED.value
            stage.approver_user_id = actor.user_id
            stage.comments = comments
            stage.action_date = self._clock.now()
            stage.updated_by_id = actor.user_id
            self.session.flush()

            next_stage = self._current_stage_row(dv_id)
            old_status = dv.status
            new_status = dv_status_after(next_stage.stage if next_stage else None)
            dv.status = new_status.value
            dv.updated_by_id = actor.user_id
            self.session.flush()

            logger.info(
                "stage_approved",
                extra={
                    "stage": stage.stage,
                    "stage_order": stage.stage_order,
                    "next_stage": next_stage.stage if next_stage else None,
                    "dv_status": new_status.value,
                },
            )
            self._audit(actor, "approve_dv_stage", "disbursement_voucher", dv_id,
                        old_values={"status": old_status, "stage": stage.stage},
                        new_values={"status": new_status.value,
                                    "next_stage": next_stage.stage if next_stage else None,
                                    "comments": comments})
            return StageTransition(
                dv_id=dv_id,
                acted_stage=stage.to_dto(),
                next_stage=next_stage.to_dto() if next_stage else None,
                dv_status=new_status,
            )

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("approve_stage", actor, work, dv_id=dv_id)

    def reject_stage(
        self,
        dv_id: UUID,
        actor: ActorContext,
        comments: str,
    ) -> OperationResult[StageTransition]:
        """Reject the current stage; the workflow halts and the DV is rejected."""

        def work() -> StageTransition:
            if comments is None or not comments.strip():
                raise ValidationError("comments", "required when rejecting a stage")
            dv, stage = self._lock_current_stage(dv_id, "reject")
            self._authorize(stage, actor)

            stage.status = StageStatus.REJECTED.value
            stage.approver_user_id = actor.user_id
            stage.comments = comments.strip()
            stage.action_date = self._clock.now()
            stage.updated_by_id = actor.user_id
            self.session.flush()
            skipped = self.skip_pending_stages(dv_id, actor)

            old_status = dv.status
            dv.status = DVStatus.REJECTED.value
            dv.updated_by_id = actor.user_id
            self.session.flush()

            logger.info(
                "stage_rejected",
                extra={
                    "stage": stage.stage,
                    "stage_order": stage.stage_order,
                    "skipped_stages": skipped,
                },
            )
            self._audit(actor, "reject_dv_stage", "disbursement_voucher", dv_id,
                        old_values={"status": old_status, "stage": stage.stage},
                        new_values={"status": DVStatus.REJECTED.value,
                                    "comments": stage.comments})
            return StageTransition(
                dv_id=dv_id,
                acted_stage=stage.to_dto(),
                next_stage=None,
                dv_status=DVStatus.REJECTED,
            )

        with LogContext.bind(dv_id=str(dv_id)):
            return self._run("reject_stage", actor, work, dv_id=dv_id)

    def skip_pending_stages(self, dv_id: UUID, actor: ActorContext) -> int:
        """Mark every still-pending stage of ``dv_id`` skipped.  Flush only."""
        result = self.session.execute(
            update(ApprovalWorkflowStage)
            .where(
                ApprovalWorkflowStage.dv_id == dv_id,
                ApprovalWorkflowStage.status == StageStatus.PENDING.value,
            )
            .values(
                status=StageStatus.SKIPPED.value,
                action_date=self._clock.now(),
                updated_by_id=actor.user_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # =========================================================================
    # Queries
    # =========================================================================

    def get_current_stage(self, dv_id: UUID) -> ApprovalStage | None:
        """Lowest-order pending stage; None once the workflow is resolved."""
        row = self._current_stage_row(dv_id)
        return row.to_dto() if row else None

    def get_approval_history(self, dv_id: UUID) -> list[ApprovalStage]:
        """Every stage of ``dv_id`` in stage order, any status."""
        rows = self.session.execute(
            select(ApprovalWorkflowStage)
            .where(ApprovalWorkflowStage.dv_id == dv_id)
            .order_by(ApprovalWorkflowStage.stage_order)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_pending_approvals_for_user(self, actor: ActorContext) -> list[PendingApproval]:
        """
        Current stages the actor may sign, across all DVs.

        An administrator sees every current stage.
        """
        current_order = (
            select(
                ApprovalWorkflowStage.dv_id.label("dv_id"),
                func.min(ApprovalWorkflowStage.stage_order).label("stage_order"),
            )
            .where(ApprovalWorkflowStage.status == StageStatus.PENDING.value)
            .group_by(ApprovalWorkflowStage.dv_id)
            .subquery()
        )
        query = (
            select(ApprovalWorkflowStage, DisbursementVoucher)
            .join(
                current_order,
                and_(
                    current_order.c.dv_id == ApprovalWorkflowStage.dv_id,
                    current_order.c.stage_order == ApprovalWorkflowStage.stage_order,
                ),
            )
            .join(DisbursementVoucher, DisbursementVoucher.id == ApprovalWorkflowStage.dv_id)
            .join(Role, Role.id == ApprovalWorkflowStage.approver_role_id)
            .order_by(DisbursementVoucher.dv_no)
        )
        if not actor.has_role(self._workflow.administrator_role):
            query = query.where(Role.name.in_(sorted(actor.roles)))

        return [
            PendingApproval(
                dv_id=dv.id,
                dv_no=dv.dv_no,
                payee_name=dv.payee_name,
                amount=dv.amount,
                stage=stage.to_dto(),
            )
            for stage, dv in self.session.execute(query).all()
        ]

    # =========================================================================
    # Internals
    # =========================================================================

    def _current_stage_row(self, dv_id: UUID) -> ApprovalWorkflowStage | None:
        return self.session.execute(
            select(ApprovalWorkflowStage)
            .where(
                ApprovalWorkflowStage.dv_id == dv_id,
                ApprovalWorkflowStage.status == StageStatus.PENDING.value,
            )
            .order_by(ApprovalWorkflowStage.stage_order)
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_current_stage(
        self, dv_id: UUID, action: str,
    ) -> tuple[DisbursementVoucher, ApprovalWorkflowStage]:
        dv = self._lock(DisbursementVoucher, dv_id)
        if not DVStatus(dv.status).is_pending:
            raise StateConflictError(
                "DisbursementVoucher", dv_id, dv.status, f"{action} stage of",
            )
        stage = self._current_stage_row(dv_id)
        if stage is None:
            raise StateConflictError(
                "DisbursementVoucher", dv_id, dv.status, f"{action} stage of",
                detail="no pending stage remains",
            )
        return dv, stage

    def _authorize(self, stage: ApprovalWorkflowStage, actor: ActorContext) -> None:
        role_name = self.session.execute(
            select(Role.name).where(Role.id == stage.approver_role_id)
        ).scalar_one()
        if not actor.can_act_as(role_name, self._workflow.administrator_role):
            logger.warning(
                "stage_permission_denied",
                extra={"stage": stage.stage, "required_role": role_name},
            )
            raise PermissionDeniedError(actor.user_id, role_name, stage.stage)
