"""
Module: settlement_kernel.models.party_role
Responsibility: ORM persistence for the role index: which party identities
    hold which roles.  Source of truth for role authority checks and for
    role fan-out of notifications.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - A (party_id, role) pair appears at most once (uq_party_role).

Failure modes:
    - IntegrityError on duplicate assignment (the directory service checks
      first, so this only fires on a concurrent double assign).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from settlement_kernel.domain.parties import RoleAssignment


class PartyRoleModel(Base):
    """One role held by one party identity."""

    __tablename__ = "party_roles"

    __table_args__ = (
        UniqueConstraint("party_id", "role", name="uq_party_role"),
        Index("idx_party_role_role", "role"),
    )

    party_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> RoleAssignment:
        """Convert ORM model to frozen domain DTO."""
        from settlement_kernel.domain.parties import PartyRole, RoleAssignment

        return RoleAssignment(
            party_id=self.party_id,
            role=PartyRole(self.role),
            assigned_at=self.assigned_at,
            display_name=self.display_name,
        )

    def __repr__(self) -> str:
        return f"<PartyRole {self.party_id}: {self.role}>"
