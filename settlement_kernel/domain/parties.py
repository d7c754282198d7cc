"""
Parties and roles.

Every acting identity is a UUID holding one or more ``PartyRole`` values in
the role index.  Deed signature slots are addressed by ``SignerRole``; each
slot is owned by exactly one party role.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class PartyRole(str, Enum):
    """Role an authenticated identity acts under."""

    SUPPLIER = "supplier"
    SPV = "spv"
    MDA = "mda"
    TREASURY = "treasury"
    ADMIN = "admin"


class SignerRole(str, Enum):
    """Deed signature slot, in signing order."""

    ASSIGNOR = "assignor"
    PROCURING_ENTITY = "procuring_entity"
    SERVICING_AGENT = "servicing_agent"

    @property
    def party_role(self) -> PartyRole:
        """Party role required to fill this slot."""
        return _SIGNER_PARTY_ROLES[self]

    @property
    def pending_status(self) -> str:
        """Deed status in which this slot is awaiting a signature."""
        return f"pending_{self.value}"


_SIGNER_PARTY_ROLES: dict[SignerRole, PartyRole] = {
    SignerRole.ASSIGNOR: PartyRole.SUPPLIER,
    SignerRole.PROCURING_ENTITY: PartyRole.MDA,
    SignerRole.SERVICING_AGENT: PartyRole.TREASURY,
}

SIGNING_ORDER: tuple[SignerRole, ...] = (
    SignerRole.ASSIGNOR,
    SignerRole.PROCURING_ENTITY,
    SignerRole.SERVICING_AGENT,
)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: identity plus the role it is acting under."""

    party_id: UUID
    role: PartyRole

    def __post_init__(self) -> None:
        if not isinstance(self.role, PartyRole):
            object.__setattr__(self, "role", PartyRole(self.role))


@dataclass(frozen=True)
class RoleAssignment:
    """One row of the role index."""

    party_id: UUID
    role: PartyRole
    assigned_at: datetime
    display_name: str | None = None
