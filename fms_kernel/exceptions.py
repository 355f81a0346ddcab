"""
Typed exception hierarchy for the fund management kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes that
identify exactly which ceiling, state, or permission was violated.

    FmsKernelError (base)
    |
    +-- ValidationError            VALIDATION_ERROR
    +-- NotFoundError              NOT_FOUND
    +-- StateConflictError         STATE_CONFLICT
    +-- BudgetExceededError        BUDGET_EXCEEDED
    +-- PermissionDeniedError      PERMISSION_DENIED
    +-- SeriesExhaustedError       SERIES_EXHAUSTED
    +-- ConfigurationError         CONFIGURATION_ERROR
        +-- RoleNotProvisionedError    ROLE_NOT_PROVISIONED

Handling pattern:

    result = ledger.create_allotment(...)
    if not result.is_success:
        if isinstance(result.error, BudgetExceededError):
            return {"error": result.error.code, "excess": str(result.error.excess)}

Nothing raised here is retried automatically.  ``ConfigurationError`` is a
deployment fault (missing role provisioning, bad workflow config) and is
never converted into an ``OperationResult``; it propagates.
"""

from decimal import Decimal


class FmsKernelError(Exception):
    """
    Base exception for all kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FMS_KERNEL_ERROR"


class ValidationError(FmsKernelError):
    """Missing or malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class NotFoundError(FmsKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class StateConflictError(FmsKernelError):
    """Operation is not valid for the entity's current status."""

    code: str = "STATE_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str | None,
        attempted_action: str,
        detail: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_status = current_status
        self.attempted_action = attempted_action
        self.detail = detail
        message = (
            f"Cannot {attempted_action} {entity_type} {entity_id} "
            f"in status '{current_status}'"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BudgetExceededError(FmsKernelError):
    """
    Request would breach an appropriation, allotment or obligation ceiling.

    ``ceiling_type`` is ``"appropriation"`` (allotments against an
    appropriation), ``"allotment"`` (approved obligations against an
    allotment) or ``"obligation"`` (linked DVs against an obligation).
    ``excess`` is the amount by which the ceiling would be overrun.
    """

    code: str = "BUDGET_EXCEEDED"

    def __init__(
        self,
        ceiling_type: str,
        ceiling_id: str,
        ceiling_amount: Decimal,
        committed_amount: Decimal,
        requested_amount: Decimal,
    ):
        self.ceiling_type = ceiling_type
        self.ceiling_id = str(ceiling_id)
        self.ceiling_amount = ceiling_amount
        self.committed_amount = committed_amount
        self.requested_amount = requested_amount
        self.available_amount = ceiling_amount - committed_amount
        self.excess = committed_amount + requested_amount - ceiling_amount
        super().__init__(
            f"Amount {requested_amount} exceeds available {ceiling_type} "
            f"{ceiling_id} balance of {self.available_amount} by {self.excess}"
        )


class PermissionDeniedError(FmsKernelError):
    """Actor lacks the role required for the current approval stage."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, required_role: str, stage: str):
        self.actor_id = str(actor_id)
        self.required_role = required_role
        self.stage = stage
        super().__init__(
            f"Actor {actor_id} lacks role '{required_role}' "
            f"required for stage '{stage}'"
        )


class SeriesExhaustedError(FmsKernelError):
    """A bounded numbering series has no numbers left."""

    code: str = "SERIES_EXHAUSTED"

    def __init__(self, series_code: str, end_number: int, reason: str = "exhausted"):
        self.series_code = series_code
        self.end_number = end_number
        self.reason = reason
        super().__init__(
            f"Number series {series_code} is {reason} (end number {end_number})"
        )


class ConfigurationError(FmsKernelError):
    """Deployment or provisioning fault.  Never retried, never defaulted."""

    code: str = "CONFIGURATION_ERROR"


class RoleNotProvisionedError(ConfigurationError):
    """A role required by the approval workflow does not exist."""

    code: str = "ROLE_NOT_PROVISIONED"

    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"Required role is not provisioned: {role_name}")
