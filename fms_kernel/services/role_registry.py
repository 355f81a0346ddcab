"""
RoleRegistry -- resolves workflow role names to provisioned role ids.

Stage rows record the id of the role that must sign them.  Resolution is by
exact name against the ``roles`` table and happens once per workflow
initialization.  A missing role is a deployment fault: it raises
``RoleNotProvisionedError`` and is never replaced by a guessed id.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fms_kernel.domain.identity import ActorContext
from fms_kernel.domain.workflow import WorkflowDefinition
from fms_kernel.exceptions import RoleNotProvisionedError
from fms_kernel.logging_config import get_logger
from fms_kernel.models.reference import Role

logger = get_logger("services.role_registry")


class RoleRegistry:
    def __init__(self, session: Session):
        self._session = session

    def resolve(self, role_names: Iterable[str]) -> dict[str, UUID]:
        """
        Map each role name to its id.

        Raises:
            RoleNotProvisionedError: for the first (alphabetical) missing name.
        """
        wanted = sorted(set(role_names))
        rows = self._session.execute(
            select(Role.name, Role.id).where(Role.name.in_(wanted))
        ).all()
        found = {name: role_id for name, role_id in rows}
        for name in wanted:
            if name not in found:
                logger.error("role_not_provisioned", extra={"role_name": name})
                raise RoleNotProvisionedError(name)
        return found

    def verify_workflow(self, workflow: WorkflowDefinition) -> dict[str, UUID]:
        """Startup check: every stage role and the administrator role exist."""
        resolved = self.resolve(workflow.role_names)
        logger.info(
            "workflow_roles_verified",
            extra={"role_count": len(resolved)},
        )
        return resolved

    def provision(
        self,
        role_name: str,
        actor: ActorContext,
        display_name: str | None = None,
    ) -> Role:
        """Create ``role_name`` if absent.  Returns the existing row otherwise."""
        role = self._session.execute(
            select(Role).where(Role.name == role_name)
        ).scalar_one_or_none()
        if role is not None:
            return role
        role = Role(
            name=role_name,
            display_name=display_name or role_name.replace("_", " ").title(),
            created_by_id=actor.user_id,
        )
        self._session.add(role)
        self._session.flush()
        logger.info("role_provisioned", extra={"role_name": role_name})
        return role

    def provision_workflow(self, workflow: WorkflowDefinition, actor: ActorContext) -> dict[str, UUID]:
        """Provision every role the workflow needs.  Used by bootstrap and tests."""
        return {
            name: self.provision(name, actor).id
            for name in sorted(workflow.role_names)
        }
