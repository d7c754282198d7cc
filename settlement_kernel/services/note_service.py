"""
settlement_kernel.services.note_service -- Receivable note issuance and trading.

Responsibility:
    Issues receivable notes against fully executed deeds, mints them exactly
    once through the evidence generator, and moves them forward through
    listing, sale and redemption.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A note can only be generated from a ``fully_executed`` deed.
    - face_value is the deed's principal amount, copied once.
    - draft -> minted happens once; two mint calls never yield two token ids
      (entity lock plus the row version).
    - Status only moves forward along ``NOTE_WORKFLOW``.

Failure modes:
    - DeedNotFoundError / NoteNotFoundError for unknown ids.
    - DeedNotExecutedError when the deed is not fully executed.
    - AlreadyMintedError when minting a note that left draft.
    - InvalidTransitionError on any backwards or repeated move.
    - UnauthorizedError when the actor is not an SPV or not the issuer.
    - ValidationError for dates, wallets, prices or metadata.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.deed import DeedStatus
from settlement_kernel.domain.evidence import EvidenceGenerator, is_wallet_address
from settlement_kernel.domain.note import (
    NOTE_WORKFLOW,
    NoteStatus,
    ReceivableNote,
    format_note_number,
    to_base36,
)
from settlement_kernel.domain.notification import Notice, NotificationCategory, RecipientSelector
from settlement_kernel.domain.parties import Actor, PartyRole
from settlement_kernel.exceptions import (
    AlreadyMintedError,
    ConflictError,
    DeedNotExecutedError,
    DeedNotFoundError,
    InvalidTransitionError,
    NoteNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.deed import DeedModel
from settlement_kernel.models.note import ReceivableNoteModel
from settlement_kernel.services._transaction import SessionFactory, read_only, transaction
from settlement_kernel.services.notification_dispatcher import NotificationDispatcher
from settlement_kernel.services.party_directory import PartyDirectory

logger = get_logger("services.note")

ENTITY = "ReceivableNote"

MAX_NUMBER_ATTEMPTS = 8

Apply = Callable[[ReceivableNoteModel, datetime], None]


def _load_note_for_update(session: Session, note_id: UUID) -> ReceivableNoteModel:
    note = session.execute(
        select(ReceivableNoteModel)
        .where(ReceivableNoteModel.id == note_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if note is None:
        raise NoteNotFoundError(str(note_id))
    return note


def _clean_metadata(metadata: dict | None) -> dict[str, str]:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata", "must be a mapping of strings")
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError("metadata", f"entry {key!r} must map a string to a string")
    return dict(metadata)


class NoteService:
    """Receivable note lifecycle."""

    def __init__(
        self,
        session_factory: SessionFactory,
        directory: PartyDirectory,
        dispatcher: NotificationDispatcher,
        locks: EntityLockRegistry,
        ledger: EvidenceGenerator,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        number_prefix: str = "RN",
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._dispatcher = dispatcher
        self._locks = locks
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._number_prefix = number_prefix

    # -- issuance -------------------------------------------------------

    def generate_note(
        self,
        deed_id: UUID,
        maturity_date: date,
        actor: Actor,
        metadata: dict[str, str] | None = None,
    ) -> ReceivableNote:
        """Create a draft note over a fully executed deed."""
        extra = _clean_metadata(metadata)

        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type="Deed",
            entity_id=deed_id,
            operation="generate_note",
        ):
            with transaction(self._session_factory, ENTITY) as session:
                self._directory.require_role(session, actor, (PartyRole.SPV,), "generate_note")
                deed = session.get(DeedModel, deed_id)
                if deed is None:
                    raise DeedNotFoundError(str(deed_id))
                if deed.status != DeedStatus.FULLY_EXECUTED.value:
                    raise DeedNotExecutedError(str(deed.id), deed.status)

                now = self._clock.now()
                issue_date = now.date()
                if not isinstance(maturity_date, date) or isinstance(maturity_date, datetime):
                    raise ValidationError("maturity_date", "must be a date")
                if maturity_date <= issue_date:
                    raise ValidationError(
                        "maturity_date", f"must be after the issue date {issue_date.isoformat()}"
                    )

                extra.update({
                    "bill_id": str(deed.bill_id),
                    "deed_id": str(deed.id),
                    "deed_hash": deed.content_hash,
                    "deed_tx_hash": deed.tx_hash or "",
                    "assignor_id": str(deed.assignor_id),
                    "procuring_entity_id": str(deed.procuring_entity_id),
                    "servicing_agent_id": str(deed.servicing_agent_id),
                    "principal_amount": format(deed.principal_amount.normalize(), "f"),
                    "discount_rate": format(deed.discount_rate.normalize(), "f"),
                    "purchase_price": format(deed.purchase_price.normalize(), "f"),
                })

                note = ReceivableNoteModel(
                    deed_id=deed.id,
                    bill_id=deed.bill_id,
                    note_number=self._allocate_number(session, now),
                    face_value=deed.principal_amount,
                    issue_date=issue_date,
                    maturity_date=maturity_date,
                    issuer_id=actor.party_id,
                    token_uri=self._ledger.token_uri(),
                    network=self._ledger.network,
                    note_metadata=extra,
                    status=NoteStatus.DRAFT.value,
                    created_at=now,
                    created_by_id=actor.party_id,
                )
                session.add(note)
                session.flush()
                dto = note.to_dto()

            logger.info(
                "note_generated",
                extra={
                    "note_id": str(dto.id),
                    "note_number": dto.note_number,
                    "deed_id": str(deed_id),
                    "face_value": dto.face_value,
                },
            )
        return dto

    def _allocate_number(self, session: Session, now: datetime) -> str:
        for _ in range(MAX_NUMBER_ATTEMPTS):
            suffix = to_base36(self._rng.randrange(36 ** 4)).rjust(4, "0")
            candidate = format_note_number(self._number_prefix, now, suffix)
            taken = session.execute(
                select(ReceivableNoteModel.id).where(
                    ReceivableNoteModel.note_number == candidate
                )
            ).first()
            if taken is None:
                return candidate
            logger.debug("note_number_collision", extra={"note_number": candidate})
        raise ConflictError(ENTITY, self._number_prefix, "could not allocate a unique note number")

    # -- minting --------------------------------------------------------

    def mint_note(self, note_id: UUID, wallet_address: str, actor: Actor) -> ReceivableNote:
        """Mint a draft note; a second call fails with AlreadyMintedError."""

        def apply(note: ReceivableNoteModel, now: datetime) -> None:
            if not is_wallet_address(wallet_address):
                raise ValidationError("wallet_address", "must be 0x followed by 40 hex characters")
            evidence = self._ledger.record_mint(note.note_number)
            note.token_id = evidence.token_id
            note.token_registry_address = evidence.registry_address
            note.mint_tx_hash = evidence.tx_hash
            note.issuer_wallet_address = wallet_address
            note.minted_at = now

        note = self._advance(note_id, "mint", actor, apply)
        logger.info(
            "note_minted",
            extra={
                "note_id": str(note.id),
                "token_id": note.token_id,
                "mint_tx_hash": note.mint_tx_hash,
            },
        )
        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.party(note.issuer_id),
                title="Receivable Note Minted",
                message=(
                    f"Note {note.note_number} has been minted as token #{note.token_id} "
                    f"(tx {note.mint_tx_hash[:18]}...)."
                ),
                category=NotificationCategory.NOTE,
                bill_id=note.bill_id,
            )
        ])
        return note

    # -- trading --------------------------------------------------------

    def list_note(self, note_id: UUID, actor: Actor) -> ReceivableNote:
        note = self._advance(note_id, "list", actor)
        logger.info("note_listed", extra={"note_id": str(note.id)})
        return note

    def sell_note(
        self,
        note_id: UUID,
        buyer_id: UUID,
        sale_price: Decimal,
        actor: Actor,
    ) -> ReceivableNote:
        if isinstance(sale_price, bool) or not isinstance(sale_price, (Decimal, int)):
            raise ValidationError("sale_price", "must be a Decimal")
        sale_price = Decimal(sale_price)
        if not sale_price.is_finite() or sale_price <= 0:
            raise ValidationError("sale_price", f"must be positive, got {sale_price}")

        def apply(note: ReceivableNoteModel, now: datetime) -> None:
            if buyer_id == note.issuer_id:
                raise ValidationError("buyer_id", "issuer cannot buy its own note")
            note.buyer_id = buyer_id
            note.sale_price = sale_price
            note.sold_at = now

        note = self._advance(note_id, "sell", actor, apply)
        logger.info(
            "note_sold",
            extra={"note_id": str(note.id), "buyer_id": str(buyer_id), "sale_price": sale_price},
        )
        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.party(buyer_id),
                title="Receivable Note Purchased",
                message=f"You purchased receivable note {note.note_number}.",
                category=NotificationCategory.NOTE,
                bill_id=note.bill_id,
            )
        ])
        return note

    def redeem_note(self, note_id: UUID, actor: Actor) -> ReceivableNote:
        def apply(note: ReceivableNoteModel, now: datetime) -> None:
            note.redeemed_at = now

        note = self._advance(note_id, "redeem", actor, apply)
        logger.info("note_redeemed", extra={"note_id": str(note.id)})
        holder = note.buyer_id or note.issuer_id
        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.party(holder),
                title="Receivable Note Redeemed",
                message=f"Receivable note {note.note_number} has been redeemed.",
                category=NotificationCategory.NOTE,
                bill_id=note.bill_id,
            )
        ])
        return note

    # -- queries --------------------------------------------------------

    def get_note(self, note_id: UUID) -> ReceivableNote:
        with read_only(self._session_factory) as session:
            note = session.get(ReceivableNoteModel, note_id)
            if note is None:
                raise NoteNotFoundError(str(note_id))
            return note.to_dto()

    def list_notes(
        self,
        deed_id: UUID | None = None,
        issuer_id: UUID | None = None,
        status: NoteStatus | str | None = None,
    ) -> tuple[ReceivableNote, ...]:
        stmt = select(ReceivableNoteModel)
        if deed_id is not None:
            stmt = stmt.where(ReceivableNoteModel.deed_id == deed_id)
        if issuer_id is not None:
            stmt = stmt.where(ReceivableNoteModel.issuer_id == issuer_id)
        if status is not None:
            try:
                stmt = stmt.where(ReceivableNoteModel.status == NoteStatus(status).value)
            except ValueError as exc:
                raise ValidationError("status", f"unknown note status {status!r}") from exc
        stmt = stmt.order_by(ReceivableNoteModel.created_at, ReceivableNoteModel.note_number)
        with read_only(self._session_factory) as session:
            return tuple(n.to_dto() for n in session.execute(stmt).scalars())

    # -- internals ------------------------------------------------------

    def _advance(
        self,
        note_id: UUID,
        action: str,
        actor: Actor,
        apply: Apply | None = None,
    ) -> ReceivableNote:
        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type=ENTITY,
            entity_id=note_id,
            operation=action,
        ):
            with self._locks.hold(ENTITY, note_id):
                with transaction(self._session_factory, ENTITY, note_id) as session:
                    note = _load_note_for_update(session, note_id)
                    self._directory.require_role(session, actor, (PartyRole.SPV,), action)
                    if actor.party_id != note.issuer_id:
                        raise UnauthorizedError(
                            str(actor.party_id), actor.role.value, action, "not the note's issuer"
                        )
                    transition = NOTE_WORKFLOW.find(action, note.status)
                    if transition is None:
                        if action == "mint":
                            raise AlreadyMintedError(str(note.id), note.status)
                        raise InvalidTransitionError(ENTITY, str(note.id), action, note.status)

                    now = self._clock.now()
                    if apply is not None:
                        apply(note, now)
                    note.status = transition.to_state
                    note.updated_by_id = actor.party_id
                    session.flush()
                    return note.to_dto()
