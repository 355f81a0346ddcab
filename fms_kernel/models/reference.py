"""
Module: fms_kernel.models.reference
Responsibility: ORM persistence for reference data: fund clusters, objects
    of expenditure, and the role catalogue used by the approval workflow.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Codes are unique.  Reference rows are deactivated, never deleted.
    - Role names are unique.  Workflow stages resolve required role ids by
      name from this table; identity and role membership live outside the
      kernel.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fms_kernel.db.base import TrackedBase
from fms_kernel.domain.ledger import (
    FundCluster as FundClusterDTO,
    ObjectOfExpenditure as ObjectOfExpenditureDTO,
)


class FundCluster(TrackedBase):
    """Isolated accounting bucket (e.g. 01 Regular Agency Fund)."""

    __tablename__ = "fund_clusters"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<FundCluster {self.code}>"

    def to_dto(self) -> FundClusterDTO:
        return FundClusterDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            is_active=self.is_active,
        )


class ObjectOfExpenditure(TrackedBase):
    """Standardized government expenditure classification code."""

    __tablename__ = "objects_of_expenditure"

    __table_args__ = (
        Index("idx_object_expenditure_category", "category"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ObjectOfExpenditure {self.code}>"

    def to_dto(self) -> ObjectOfExpenditureDTO:
        return ObjectOfExpenditureDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            category=self.category,
        )


class Role(TrackedBase):
    """Provisioned role.  Membership is supplied per request by ActorContext."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Role {self.name}>"
