"""Kernel services: ledger, workflow, disbursement, payment, numbering."""

from fms_kernel.services.approval_service import ApprovalWorkflowService
from fms_kernel.services.audit import (
    AuditRecord,
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    emit_audit,
)
from fms_kernel.services.budget_service import BudgetLedgerService
from fms_kernel.services.disbursement_service import DisbursementService
from fms_kernel.services.payment_service import PaymentService
from fms_kernel.services.role_registry import RoleRegistry
from fms_kernel.services.sequence_service import SerialAllocator

__all__ = [
    "ApprovalWorkflowService",
    "AuditRecord",
    "AuditSink",
    "BudgetLedgerService",
    "DisbursementService",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "PaymentService",
    "RoleRegistry",
    "SerialAllocator",
    "emit_audit",
]
