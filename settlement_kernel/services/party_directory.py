"""
settlement_kernel.services.party_directory -- Role index: who holds which role.

Responsibility:
    Maintains the ``party_roles`` table and answers the two questions every
    lifecycle service asks: "may this actor act under this role?" and
    "who holds role X?" (notification fan-out).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - UnauthorizedError from ``require_role`` when the claimed role is not
      permitted for the action or is not held by the actor.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.parties import Actor, PartyRole, RoleAssignment
from settlement_kernel.exceptions import UnauthorizedError, ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.party_role import PartyRoleModel
from settlement_kernel.services._transaction import SessionFactory, read_only, transaction

logger = get_logger("services.party_directory")


def _coerce_role(role: PartyRole | str) -> PartyRole:
    try:
        return PartyRole(role)
    except ValueError as exc:
        raise ValidationError("role", f"unknown role {role!r}") from exc


class PartyDirectory:
    """Role index backed by the ``party_roles`` table."""

    def __init__(self, session_factory: SessionFactory, clock: Clock | None = None) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # -- writes ---------------------------------------------------------

    def assign_role(
        self,
        party_id: UUID,
        role: PartyRole | str,
        display_name: str | None = None,
    ) -> RoleAssignment:
        """Grant ``role`` to ``party_id``; assigning an already held role is a no-op."""
        role = _coerce_role(role)
        with transaction(self._session_factory, "PartyRole", party_id) as session:
            existing = self._find(session, party_id, role)
            if existing is not None:
                return existing.to_dto()
            model = PartyRoleModel(
                party_id=party_id,
                role=role.value,
                display_name=display_name,
                assigned_at=self._clock.now(),
            )
            session.add(model)
            session.flush()
            dto = model.to_dto()

        logger.info("role_assigned", extra={"party_id": str(party_id), "role": role.value})
        return dto

    def revoke_role(self, party_id: UUID, role: PartyRole | str) -> bool:
        """Remove ``role`` from ``party_id``.  Returns False if it was not held."""
        role = _coerce_role(role)
        with transaction(self._session_factory, "PartyRole", party_id) as session:
            existing = self._find(session, party_id, role)
            if existing is None:
                return False
            session.delete(existing)

        logger.info("role_revoked", extra={"party_id": str(party_id), "role": role.value})
        return True

    # -- queries --------------------------------------------------------

    def has_role(
        self,
        party_id: UUID,
        role: PartyRole | str,
        session: Session | None = None,
    ) -> bool:
        role = _coerce_role(role)
        if session is not None:
            return self._find(session, party_id, role) is not None
        with read_only(self._session_factory) as own:
            return self._find(own, party_id, role) is not None

    def roles_of(self, party_id: UUID) -> frozenset[PartyRole]:
        with read_only(self._session_factory) as session:
            rows = session.execute(
                select(PartyRoleModel.role).where(PartyRoleModel.party_id == party_id)
            ).scalars()
            return frozenset(PartyRole(r) for r in rows)

    def members_of(
        self,
        role: PartyRole | str,
        session: Session | None = None,
    ) -> tuple[UUID, ...]:
        """Identities holding ``role``, in assignment order."""
        role = _coerce_role(role)
        stmt = (
            select(PartyRoleModel.party_id)
            .where(PartyRoleModel.role == role.value)
            .order_by(PartyRoleModel.assigned_at, PartyRoleModel.party_id)
        )
        if session is not None:
            return tuple(session.execute(stmt).scalars())
        with read_only(self._session_factory) as own:
            return tuple(own.execute(stmt).scalars())

    # -- authority ------------------------------------------------------

    def require_role(
        self,
        session: Session,
        actor: Actor,
        allowed: Iterable[PartyRole | str],
        action: str,
    ) -> None:
        """
        Ensure ``actor`` acts under a permitted role that it actually holds.

        Raises:
            UnauthorizedError: Role not permitted, or not held by the actor.
        """
        allowed_values = {PartyRole(r).value for r in allowed}
        if actor.role.value not in allowed_values:
            raise UnauthorizedError(
                str(actor.party_id),
                actor.role.value,
                action,
                f"requires one of {', '.join(sorted(allowed_values))}",
            )
        if self._find(session, actor.party_id, actor.role) is None:
            raise UnauthorizedError(
                str(actor.party_id),
                actor.role.value,
                action,
                "role is not assigned to this party",
            )

    @staticmethod
    def _find(session: Session, party_id: UUID, role: PartyRole) -> PartyRoleModel | None:
        return session.execute(
            select(PartyRoleModel).where(
                PartyRoleModel.party_id == party_id,
                PartyRoleModel.role == role.value,
            )
        ).scalar_one_or_none()
