"""
settlement_kernel.services.deed_service -- Tripartite deed signing protocol.

Responsibility:
    Creates deeds of assignment over bills, collects the three signatures in
    order (assignor, procuring entity, servicing agent), stamps ledger
    evidence and certifies the bill when the last signature lands, and
    handles deed rejection.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the bill
    service helpers.

Invariants enforced:
    - The content hash is computed once at creation over the canonical deed
      fields plus the creation timestamp and never rewritten.
    - Exactly one signature slot moves from unsigned to signed per call, and
      only the slot named by the current status.
    - At most one live (non-rejected) deed per bill.
    - Check-then-act runs under the deed's entity lock; the bill lock, when
      needed, is taken second (deed -> bill, never the reverse).
    - Notices are enqueued only after commit, outside every lock.

Failure modes:
    - DeedNotFoundError / BillNotFoundError for unknown ids.
    - WrongSignerError when the deed is not awaiting this signer; the deed
      is left untouched.
    - UnauthorizedError when the actor may not fill the slot.
    - ValidationError for malformed wallets, amounts or document content.
    - DeedAlreadyExistsError when the bill already has a live deed.
    - InvalidTransitionError when the bill cannot accept the deed's effect
      (e.g. it was rejected while the deed was being signed).
    - ConflictError on lock timeout or a lost optimistic update.
"""

from __future__ import annotations

import random
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.domain.bill import BILL_WORKFLOW, DEED_ELIGIBLE_STATUSES, BillStatus
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.deed import (
    DEED_WORKFLOW,
    Deed,
    DeedContent,
    DeedStatus,
    SigningResult,
)
from settlement_kernel.domain.evidence import EvidenceGenerator, is_wallet_address
from settlement_kernel.domain.notification import Notice, NotificationCategory, RecipientSelector
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_kernel.exceptions import (
    DeedAlreadyExistsError,
    DeedNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
    WrongSignerError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bill import BillModel
from settlement_kernel.models.deed import DeedModel
from settlement_kernel.services._transaction import SessionFactory, read_only, transaction
from settlement_kernel.services.bill_service import (
    format_money,
    load_bill_for_update,
    record_transition,
    require_transition,
    stamp_certification,
)
from settlement_kernel.services.notification_dispatcher import NotificationDispatcher
from settlement_kernel.services.party_directory import PartyDirectory
from settlement_kernel.utils.hashing import hash_deed_content, sign_content_hash

logger = get_logger("services.deed")

ENTITY = "Deed"


def _require_amount(field: str, value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field, f"must be a Decimal, got {type(value).__name__}")
    value = Decimal(value)
    if not value.is_finite() or value <= 0:
        raise ValidationError(field, f"must be positive, got {value}")
    return value


def _coerce_content(content: DeedContent | dict) -> DeedContent:
    if isinstance(content, DeedContent):
        return content
    if isinstance(content, dict):
        return DeedContent.from_payload(content)
    raise ValidationError("document_content", f"unsupported type {type(content).__name__}")


def _coerce_signer(signer_role: SignerRole | str) -> SignerRole:
    try:
        return SignerRole(signer_role)
    except ValueError as exc:
        raise ValidationError("signer_role", f"unknown signer role {signer_role!r}") from exc


def load_deed_for_update(session: Session, deed_id: UUID) -> DeedModel:
    deed = session.execute(
        select(DeedModel)
        .where(DeedModel.id == deed_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if deed is None:
        raise DeedNotFoundError(str(deed_id))
    return deed


class DeedService:
    """Deed of assignment creation, signing and rejection."""

    def __init__(
        self,
        session_factory: SessionFactory,
        directory: PartyDirectory,
        dispatcher: NotificationDispatcher,
        locks: EntityLockRegistry,
        ledger: EvidenceGenerator,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._dispatcher = dispatcher
        self._locks = locks
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()

    # -- creation -------------------------------------------------------

    def create_deed(
        self,
        bill_id: UUID,
        assignor_id: UUID,
        procuring_entity_id: UUID,
        principal_amount: Decimal,
        discount_rate: Decimal,
        purchase_price: Decimal,
        content: DeedContent | dict,
        actor: Actor,
    ) -> Deed:
        """Draft a deed over an accepted offer; the assignor signs first."""
        principal_amount = _require_amount("principal_amount", principal_amount)
        purchase_price = _require_amount("purchase_price", purchase_price)
        if isinstance(discount_rate, bool) or not isinstance(discount_rate, (Decimal, int)):
            raise ValidationError("discount_rate", "must be a Decimal")
        discount_rate = Decimal(discount_rate)
        if discount_rate < 0 or discount_rate > 100:
            raise ValidationError("discount_rate", f"must be within [0, 100], got {discount_rate}")
        if purchase_price > principal_amount:
            raise ValidationError("purchase_price", "cannot exceed the principal amount")
        document = _coerce_content(content)

        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type="Bill",
            entity_id=bill_id,
            operation="create_deed",
        ):
            with self._locks.hold("Bill", bill_id):
                with transaction(self._session_factory, "Bill", bill_id) as session:
                    bill = load_bill_for_update(session, bill_id)
                    self._directory.require_role(session, actor, (PartyRole.SPV,), "create_deed")
                    if BillStatus(bill.status) not in DEED_ELIGIBLE_STATUSES:
                        raise InvalidTransitionError("Bill", str(bill.id), "create_deed", bill.status)
                    if bill.spv_id is not None and bill.spv_id != actor.party_id:
                        raise UnauthorizedError(
                            str(actor.party_id),
                            actor.role.value,
                            "create_deed",
                            "not the SPV whose offer was accepted",
                        )
                    if assignor_id != bill.supplier_id:
                        raise ValidationError("assignor_id", "must be the bill's supplier")
                    if procuring_entity_id != bill.procuring_entity_id:
                        raise ValidationError(
                            "procuring_entity_id", "must be the bill's procuring entity"
                        )
                    live = self._live_deed(session, bill.id)
                    if live is not None:
                        raise DeedAlreadyExistsError(str(bill.id), str(live.id))

                    now = self._clock.now()
                    payload = document.to_payload()
                    content_hash = hash_deed_content(
                        bill_id=bill.id,
                        assignor_id=assignor_id,
                        procuring_entity_id=procuring_entity_id,
                        principal_amount=principal_amount,
                        discount_rate=discount_rate,
                        purchase_price=purchase_price,
                        timestamp=now,
                        document_content=payload,
                    )
                    deed = DeedModel(
                        bill_id=bill.id,
                        content_hash=content_hash,
                        status=DeedStatus.PENDING_ASSIGNOR.value,
                        assignor_id=assignor_id,
                        procuring_entity_id=procuring_entity_id,
                        principal_amount=principal_amount,
                        discount_rate=discount_rate,
                        purchase_price=purchase_price,
                        document_content=payload,
                        network=self._ledger.network,
                        created_at=now,
                        created_by_id=actor.party_id,
                    )
                    session.add(deed)

                    if bill.status == BillStatus.TERMS_SET.value:
                        self._send_agreement(session, bill, actor, now)

                    session.flush()
                    dto = deed.to_dto()
                    invoice_number = bill.invoice_number

            logger.info(
                "deed_created",
                extra={
                    "deed_id": str(dto.id),
                    "bill_id": str(bill_id),
                    "content_hash": dto.content_hash,
                    "principal_amount": dto.principal_amount,
                },
            )

        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.party(dto.assignor_id),
                title="Deed of Assignment Ready for Signing",
                message=(
                    f"A tripartite Deed of Assignment for invoice {invoice_number} "
                    f"requires your signature. Hash: {dto.content_hash[:16]}..."
                ),
                category=NotificationCategory.DEED,
                bill_id=dto.bill_id,
            )
        ])
        return dto

    # -- signing --------------------------------------------------------

    def sign_deed(
        self,
        deed_id: UUID,
        signer_role: SignerRole | str,
        wallet_address: str,
        actor: Actor,
    ) -> SigningResult:
        """Fill the slot whose turn it is and advance the deed."""
        signer = _coerce_signer(signer_role)

        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type=ENTITY,
            entity_id=deed_id,
            operation="sign_deed",
        ):
            with self._locks.hold(ENTITY, deed_id):
                with transaction(self._session_factory, ENTITY, deed_id) as session:
                    deed = load_deed_for_update(session, deed_id)
                    if deed.status != signer.pending_status:
                        raise WrongSignerError(str(deed.id), signer.value, deed.status)
                    self._authorize_signer(session, deed, signer, actor)
                    if not is_wallet_address(wallet_address):
                        raise ValidationError(
                            "wallet_address", "must be 0x followed by 40 hex characters"
                        )

                    now = self._clock.now()
                    signature = sign_content_hash(deed.content_hash, signer.value, now)
                    signature_col, wallet_col, signed_at_col = deed.slot_columns(signer.value)
                    setattr(deed, signature_col, signature)
                    setattr(deed, wallet_col, wallet_address)
                    setattr(deed, signed_at_col, now)
                    if signer == SignerRole.SERVICING_AGENT:
                        deed.servicing_agent_id = actor.party_id

                    next_status = DeedStatus(DEED_WORKFLOW.find("sign", deed.status).to_state)
                    deed.status = next_status.value
                    deed.updated_by_id = actor.party_id

                    certified = None
                    if next_status == DeedStatus.FULLY_EXECUTED:
                        evidence = self._ledger.record_execution(deed.content_hash)
                        deed.tx_hash = evidence.tx_hash
                        deed.block_number = evidence.block_number
                        deed.gas_used = evidence.gas_used
                        deed.executed_at = now
                        certified = self._certify_bill(session, deed, actor, now)

                    session.flush()
                    dto = deed.to_dto()

            logger.info(
                "deed_signed",
                extra={
                    "deed_id": str(deed_id),
                    "signer_role": signer.value,
                    "status": dto.status.value,
                    "version": dto.version,
                },
            )
            if dto.is_fully_executed:
                logger.info(
                    "deed_executed",
                    extra={
                        "deed_id": str(deed_id),
                        "bill_id": str(dto.bill_id),
                        "tx_hash": dto.execution.tx_hash,
                        "block_number": dto.execution.block_number,
                    },
                )

        self._dispatcher.enqueue(self._signing_notices(dto, certified))
        return SigningResult(deed=dto, signature=signature)

    def _authorize_signer(
        self,
        session: Session,
        deed: DeedModel,
        signer: SignerRole,
        actor: Actor,
    ) -> None:
        self._directory.require_role(session, actor, (signer.party_role,), "sign_deed")
        expected = {
            SignerRole.ASSIGNOR: deed.assignor_id,
            SignerRole.PROCURING_ENTITY: deed.procuring_entity_id,
        }.get(signer)
        if expected is not None and actor.party_id != expected:
            raise UnauthorizedError(
                str(actor.party_id),
                actor.role.value,
                "sign_deed",
                f"not the {signer.value} named on this deed",
            )

    def _send_agreement(self, session: Session, bill: BillModel, actor: Actor, now: datetime) -> None:
        to_status = require_transition(bill, "send_agreement")
        bill.agreement_sent_at = now
        record_transition(
            session, bill, to_status, "send_agreement",
            actor.party_id, actor.role.value, now,
        )

    def _certify_bill(
        self, session: Session, deed: DeedModel, actor: Actor, now: datetime
    ) -> tuple[str, str]:
        """Certify the deed's bill on full execution; returns (invoice number, currency)."""
        with self._locks.hold("Bill", deed.bill_id):
            bill = load_bill_for_update(session, deed.bill_id)
            if bill.status == BillStatus.CERTIFIED.value:
                return bill.invoice_number, bill.currency
            if bill.status == BillStatus.TERMS_SET.value:
                self._send_agreement(session, bill, actor, now)
            action = "certify" if BILL_WORKFLOW.find("certify", bill.status) else "certify_by_deed"
            to_status = require_transition(bill, action)
            certificate_number = bill.certificate_number or self._certificate_number(now)
            stamp_certification(bill, certificate_number, actor.party_id, now)
            record_transition(
                session, bill, to_status, action,
                actor.party_id, actor.role.value, now,
                reason=f"deed {deed.id} fully executed",
            )
            logger.info(
                "bill_certified_by_deed",
                extra={
                    "bill_id": str(bill.id),
                    "deed_id": str(deed.id),
                    "certificate_number": certificate_number,
                },
            )
            return bill.invoice_number, bill.currency

    def _certificate_number(self, now: datetime) -> str:
        return f"CERT-{now.year}-{self._rng.randrange(100000):05d}"

    def _signing_notices(self, deed: Deed, certified: tuple[str, str] | None) -> list[Notice]:
        def notice(recipient: RecipientSelector, title: str, message: str) -> Notice:
            return Notice(
                recipient=recipient,
                title=title,
                message=message,
                category=NotificationCategory.DEED,
                bill_id=deed.bill_id,
            )

        if deed.status == DeedStatus.PENDING_PROCURING_ENTITY:
            return [
                notice(
                    RecipientSelector.party(deed.procuring_entity_id),
                    "Deed of Assignment Requires Your Signature",
                    "The assignor has signed. Your signature as Procuring Entity is now required.",
                )
            ]
        if deed.status == DeedStatus.PENDING_SERVICING_AGENT:
            return [
                notice(
                    RecipientSelector.holders_of(PartyRole.TREASURY),
                    "Deed of Assignment Requires Treasury Signature",
                    "Assignor and Procuring Entity have signed. Your signature as "
                    "Servicing Agent is required to complete the deed.",
                )
            ]
        if deed.status == DeedStatus.FULLY_EXECUTED:
            invoice_number, currency = certified
            reference = f" for invoice {invoice_number}"
            return [
                notice(
                    RecipientSelector.party(deed.assignor_id),
                    "Deed of Assignment Fully Executed",
                    f"Your Deed of Assignment{reference} has been signed by all parties "
                    f"and recorded on the ledger (tx {deed.execution.tx_hash[:18]}...).",
                ),
                notice(
                    RecipientSelector.holders_of(PartyRole.SPV),
                    "Deed Fully Executed - Generate Receivable Notes",
                    f"The tripartite Deed of Assignment{reference} is fully executed. "
                    f"Receivable notes for {format_money(deed.principal_amount, currency)} "
                    f"can now be generated.",
                ),
            ]
        return []

    # -- rejection ------------------------------------------------------

    def reject_deed(self, deed_id: UUID, reason: str, actor: Actor) -> Deed:
        """Reject a pending deed; only the awaited party or an admin may."""
        if reason is None or not str(reason).strip():
            raise ValidationError("reason", "must not be empty")
        reason = str(reason).strip()

        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type=ENTITY,
            entity_id=deed_id,
            operation="reject_deed",
        ):
            with self._locks.hold(ENTITY, deed_id):
                with transaction(self._session_factory, ENTITY, deed_id) as session:
                    deed = load_deed_for_update(session, deed_id)
                    transition = DEED_WORKFLOW.find("reject", deed.status)
                    if transition is None:
                        raise InvalidTransitionError(ENTITY, str(deed.id), "reject", deed.status)
                    self._directory.require_role(session, actor, transition.roles, "reject_deed")
                    if actor.role != PartyRole.ADMIN:
                        self._authorize_signer(
                            session, deed, SignerRole(deed.status.removeprefix("pending_")), actor
                        )

                    now = self._clock.now()
                    deed.status = DeedStatus.REJECTED.value
                    deed.rejected_by = actor.party_id
                    deed.rejected_at = now
                    deed.rejection_reason = reason
                    deed.updated_by_id = actor.party_id
                    session.flush()
                    dto = deed.to_dto()

            logger.info(
                "deed_rejected",
                extra={"deed_id": str(deed_id), "rejected_by": str(actor.party_id)},
            )

        recipients = [dto.assignor_id]
        if dto.created_by not in recipients:
            recipients.append(dto.created_by)
        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.party(recipient),
                title="Deed of Assignment Rejected",
                message=f"The Deed of Assignment was rejected. Reason: {reason}",
                category=NotificationCategory.DEED,
                bill_id=dto.bill_id,
            )
            for recipient in recipients
        ])
        return dto

    # -- queries --------------------------------------------------------

    def get_deed(self, deed_id: UUID) -> Deed:
        with read_only(self._session_factory) as session:
            deed = session.get(DeedModel, deed_id)
            if deed is None:
                raise DeedNotFoundError(str(deed_id))
            return deed.to_dto()

    def get_deed_for_bill(self, bill_id: UUID) -> Deed | None:
        """Latest live deed of the bill, or None."""
        with read_only(self._session_factory) as session:
            deed = self._live_deed(session, bill_id)
            return deed.to_dto() if deed is not None else None

    def list_deeds(self, bill_id: UUID | None = None) -> tuple[Deed, ...]:
        stmt = select(DeedModel)
        if bill_id is not None:
            stmt = stmt.where(DeedModel.bill_id == bill_id)
        stmt = stmt.order_by(DeedModel.created_at, DeedModel.id)
        with read_only(self._session_factory) as session:
            return tuple(d.to_dto() for d in session.execute(stmt).scalars())

    @staticmethod
    def _live_deed(session: Session, bill_id: UUID) -> DeedModel | None:
        return session.execute(
            select(DeedModel)
            .where(
                DeedModel.bill_id == bill_id,
                DeedModel.status != DeedStatus.REJECTED.value,
            )
            .order_by(DeedModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

