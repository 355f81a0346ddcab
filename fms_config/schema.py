"""
FMS configuration schema.

The human-authored configuration set: approval workflow stages and their
role bindings, document numbering formats, and the roles a deployment must
provision.  YAML files are parsed into these types by the loader; the
``to_*`` bridges translate them into the kernel's own value objects.
"""

from __future__ import annotations

from dataclasses import dataclass

from fms_kernel.domain.identity import ADMINISTRATOR_ROLE
from fms_kernel.domain.numbering import NumberingFormats
from fms_kernel.domain.workflow import StageDefinition as KernelStageDefinition
from fms_kernel.domain.workflow import WorkflowDefinition

# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageDefinition:
    """One sign-off stage as written in the configuration file."""

    name: str
    order: int
    role: str


@dataclass(frozen=True)
class WorkflowConfig:
    """Ordered DV approval stages plus the administrator override role."""

    stages: tuple[StageDefinition, ...]
    administrator_role: str = ADMINISTRATOR_ROLE


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NumberingConfig:
    """``str.format`` templates for numbered documents."""

    dv_number: str = NumberingFormats.dv_number
    check_number: str = NumberingFormats.check_number
    ors_number: str = NumberingFormats.ors_number
    receipt_number: str = NumberingFormats.receipt_number


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    display_name: str | None = None


# ---------------------------------------------------------------------------
# Top-level set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FmsConfig:
    """A complete, versioned configuration set."""

    config_id: str
    version: int
    workflow: WorkflowConfig
    numbering: NumberingConfig
    roles: tuple[RoleDefinition, ...] = ()
    description: str = ""
    checksum: str = ""

    def to_workflow_definition(self) -> WorkflowDefinition:
        """
        Kernel workflow for this set.

        Raises:
            ValueError: stage list rejected by ``WorkflowDefinition``.
        """
        return WorkflowDefinition(
            stages=tuple(
                KernelStageDefinition(name=s.name, order=s.order, role_name=s.role)
                for s in self.workflow.stages
            ),
            administrator_role=self.workflow.administrator_role,
        )

    def to_numbering_formats(self) -> NumberingFormats:
        """
        Kernel numbering formats for this set.

        Raises:
            ValueError: a template does not render or omits the serial.
        """
        return NumberingFormats(
            dv_number=self.numbering.dv_number,
            check_number=self.numbering.check_number,
            ors_number=self.numbering.ors_number,
            receipt_number=self.numbering.receipt_number,
        )

    @property
    def role_names(self) -> frozenset[str]:
        """Every role the set declares or its workflow references."""
        declared = {r.name for r in self.roles}
        referenced = {s.role for s in self.workflow.stages}
        return frozenset(declared | referenced | {self.workflow.administrator_role})
