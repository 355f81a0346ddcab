"""ORM models for the fund management kernel."""

from fms_kernel.models.budget import Allotment, Appropriation, Obligation
from fms_kernel.models.disbursement import ApprovalWorkflowStage, DisbursementVoucher
from fms_kernel.models.payment import CheckDisbursementRecord, Payment
from fms_kernel.models.reference import FundCluster, ObjectOfExpenditure, Role
from fms_kernel.models.sequence import NumberSeries, SequenceCounter

__all__ = [
    "Allotment",
    "Appropriation",
    "ApprovalWorkflowStage",
    "CheckDisbursementRecord",
    "DisbursementVoucher",
    "FundCluster",
    "NumberSeries",
    "ObjectOfExpenditure",
    "Obligation",
    "Payment",
    "Role",
    "SequenceCounter",
]
