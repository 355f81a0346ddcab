"""
OperationResult -- the single result channel for ledger, workflow and
payment operations.

Every public operation of the lifecycle services returns an
``OperationResult``.  A failed result carries the typed kernel error that
explains exactly which precondition failed (current status, permission,
ceiling, amount mismatch); callers branch on ``is_success`` or ``error_code``
and never parse messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from fms_kernel.exceptions import FmsKernelError

T = TypeVar("T")


class OperationStatus(str, Enum):
    """Outcome of a kernel operation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Tagged success/failure of a kernel operation."""

    status: OperationStatus
    value: T | None = None
    error: FmsKernelError | None = None

    @classmethod
    def success(cls, value: T) -> OperationResult[T]:
        return cls(status=OperationStatus.SUCCEEDED, value=value)

    @classmethod
    def failure(cls, error: FmsKernelError) -> OperationResult[T]:
        return cls(status=OperationStatus.FAILED, error=error)

    @property
    def is_success(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
