"""
Pure domain layer: value objects, enums and state tables.  Zero I/O.
"""

from fms_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fms_kernel.domain.identity import ADMINISTRATOR_ROLE, ActorContext
from fms_kernel.domain.ledger import BudgetAvailability, BudgetSummary, ObligationStatus
from fms_kernel.domain.numbering import NumberingFormats, SerialScope
from fms_kernel.domain.payment import PaymentStatus, PaymentType
from fms_kernel.domain.results import OperationResult, OperationStatus
from fms_kernel.domain.workflow import (
    DEFAULT_WORKFLOW,
    DVStatus,
    PaymentMode,
    StageDefinition,
    StageStatus,
    WorkflowDefinition,
)

__all__ = [
    "ADMINISTRATOR_ROLE",
    "ActorContext",
    "BudgetAvailability",
    "BudgetSummary",
    "Clock",
    "DEFAULT_WORKFLOW",
    "DVStatus",
    "DeterministicClock",
    "NumberingFormats",
    "ObligationStatus",
    "OperationResult",
    "OperationStatus",
    "PaymentMode",
    "PaymentStatus",
    "PaymentType",
    "SerialScope",
    "StageDefinition",
    "StageStatus",
    "SystemClock",
    "WorkflowDefinition",
]
