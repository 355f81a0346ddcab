"""
Fund Management Kernel

A transactional core for government fund management with:
- Appropriation -> allotment -> obligation ceilings that never overrun
- Ordered, role-gated approval of disbursement vouchers
- Disbursement voucher and payment state machines
- Scoped, gapless document numbering
"""

__version__ = "0.1.0"
