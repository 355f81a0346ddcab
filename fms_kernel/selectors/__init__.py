"""Selectors for the FMS kernel (read side)."""

from fms_kernel.selectors.budget_selector import BudgetSelector
from fms_kernel.selectors.disbursement_selector import DisbursementSelector
from fms_kernel.selectors.payment_selector import PaymentSelector

__all__ = [
    "BudgetSelector",
    "DisbursementSelector",
    "PaymentSelector",
]
