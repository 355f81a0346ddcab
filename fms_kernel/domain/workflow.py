"""
Approval workflow domain types (``fms_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the disbursement voucher approval workflow: the DV
and stage status enums, the ordered stage definitions, and the mapping from
"next pending stage" to the DV's externally visible status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The workflow
definition is normally produced from YAML by ``fms_config``; the kernel
never imports the config package.

Invariants enforced
-------------------
* Stage orders are unique and strictly increasing in definition order.
* Every stage has a DV status label ``pending_<stage>`` that exists in
  ``DVStatus``.  A workflow whose stages have no matching DV status is
  rejected when the definition is built, so the DV status is always derived
  from the actual first pending stage, never from a constant.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fms_kernel.domain.identity import ADMINISTRATOR_ROLE


class DVStatus(str, Enum):
    """Disbursement voucher lifecycle states."""

    DRAFT = "draft"
    PENDING_DIVISION = "pending_division"
    PENDING_BUDGET = "pending_budget"
    PENDING_ACCOUNTING = "pending_accounting"
    PENDING_DIRECTOR = "pending_director"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_pending(self) -> bool:
        return self.value.startswith("pending_")


# Cancellation is refused only from these states.
DV_NON_CANCELLABLE_STATUSES: frozenset[DVStatus] = frozenset({
    DVStatus.PAID,
    DVStatus.CANCELLED,
})


class StageStatus(str, Enum):
    """Approval workflow stage states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class PaymentMode(str, Enum):
    """How the DV is intended to be settled."""

    MDS_CHECK = "mds_check"
    COMMERCIAL_CHECK = "commercial_check"
    ADA = "ada"
    OTHER = "other"


def dv_status_after(next_stage_name: str | None) -> DVStatus:
    """DV status once the next pending stage is known (None = all approved)."""
    if next_stage_name is None:
        return DVStatus.APPROVED
    return DVStatus(f"pending_{next_stage_name}")


@dataclass(frozen=True)
class StageDefinition:
    """One configured sign-off step."""

    name: str
    order: int
    role_name: str

    @property
    def pending_status(self) -> DVStatus:
        return dv_status_after(self.name)


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    Ordered approval stages plus the role that satisfies every stage.

    Raises:
        ValueError: on empty stages, duplicate names/orders, non-increasing
            order, or a stage with no ``pending_<stage>`` DV status.
    """

    stages: tuple[StageDefinition, ...]
    administrator_role: str = ADMINISTRATOR_ROLE

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("Workflow must define at least one stage")
        names = [s.name for s in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names in workflow: {names}")
        orders = [s.order for s in self.stages]
        if orders != sorted(set(orders)):
            raise ValueError(f"Stage orders must be unique and increasing: {orders}")
        for stage in self.stages:
            try:
                stage.pending_status
            except ValueError:
                raise ValueError(
                    f"Stage '{stage.name}' has no DV status 'pending_{stage.name}'"
                ) from None

    @property
    def first_stage(self) -> StageDefinition:
        return self.stages[0]

    @property
    def role_names(self) -> frozenset[str]:
        """Every role name the workflow needs provisioned."""
        return frozenset(s.role_name for s in self.stages) | {self.administrator_role}

    def stage(self, name: str) -> StageDefinition:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)


DEFAULT_WORKFLOW = WorkflowDefinition(
    stages=(
        StageDefinition(name="division", order=1, role_name="division_staff"),
        StageDefinition(name="budget", order=2, role_name="budget_officer"),
        StageDefinition(name="accounting", order=3, role_name="accountant"),
        StageDefinition(name="director", order=4, role_name="director"),
    ),
)


# ---------------------------------------------------------------------------
# DTOs returned by the workflow and disbursement services
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalStage:
    """One persisted stage row of a DV's workflow."""

    id: UUID
    dv_id: UUID
    stage: str
    stage_order: int
    approver_role_id: UUID
    status: StageStatus
    approver_user_id: UUID | None = None
    comments: str | None = None
    action_date: datetime | None = None


@dataclass(frozen=True)
class StageTransition:
    """Outcome of approving or rejecting the current stage."""

    dv_id: UUID
    acted_stage: ApprovalStage
    next_stage: ApprovalStage | None
    dv_status: DVStatus


@dataclass(frozen=True)
class PendingApproval:
    """A DV waiting on a stage the actor may sign."""

    dv_id: UUID
    dv_no: str
    payee_name: str
    amount: Decimal
    stage: ApprovalStage


@dataclass(frozen=True)
class DisbursementVoucher:
    id: UUID
    dv_no: str
    fund_cluster_id: UUID
    object_expenditure_id: UUID
    fiscal_year: int
    dv_date: date
    payee_name: str
    particulars: str
    amount: Decimal
    payment_mode: PaymentMode
    status: DVStatus
    obligation_id: UUID | None = None
    ors_burs_no: str | None = None
    payee_tin: str | None = None
    payee_address: str | None = None
    responsibility_center: str | None = None
    mfo_pap_id: str | None = None


@dataclass(frozen=True)
class DVCreated:
    id: UUID
    dv_no: str
    status: DVStatus


@dataclass(frozen=True)
class DVStatistic:
    """Count and total amount of DVs in one status."""

    status: DVStatus
    count: int
    total_amount: Decimal
