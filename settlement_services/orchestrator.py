"""
Settlement Orchestrator - narrow interface for the UI/API layer.

The Orchestrator wires together:
- PartyDirectory: role index and authority checks
- BillService / DeedService / NoteService: lifecycle state machines
- NotificationDispatcher / NotificationFeed: post-commit notices
- EntityLockRegistry and SimulatedLedger shared by every service

Each operation runs in its own transaction (the services open one session
per call) and returns an ``OperationResult``.  Typed ``SettlementError``s are
converted to REJECTED results carrying the error code; infrastructure errors
propagate.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable
from uuid import UUID
from uuid import uuid4 as _uuid4

from settlement_config import SettlementConfig, get_active_config
from settlement_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.domain.bill import ApprovalTerms, BillStatus, BillSubmission, OfferTerms
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.deed import DeedContent
from settlement_kernel.domain.evidence import EvidenceGenerator, SimulatedLedger
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_kernel.exceptions import SettlementError
from settlement_kernel.logging_config import LogContext, configure_logging, get_logger
from settlement_kernel.services import (
    BillService,
    DeedService,
    NoteService,
    NotificationDispatcher,
    NotificationFeed,
    PartyDirectory,
)
from settlement_kernel.services._transaction import SessionFactory

logger = get_logger("services.orchestrator")


class OperationStatus(str, Enum):
    """Outcome of an orchestrated operation."""

    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OperationResult:
    """Result of an orchestrated operation."""

    status: OperationStatus
    value: Any = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED

    def unwrap(self) -> Any:
        """Return ``value`` or raise ``RuntimeError`` for a rejected result."""
        if not self.is_success:
            raise RuntimeError(f"{self.error_code}: {self.message}")
        return self.value


def _error_details(exc: SettlementError) -> dict[str, Any]:
    details = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
    entity_type = getattr(exc, "entity_type", None)
    if entity_type is not None:
        details.setdefault("entity_type", entity_type)
    return details


class SettlementOrchestrator:
    """
    Single entry point for bill, deed, note and notification operations.

    Build one with ``from_config()`` for a configured deployment, or pass a
    session factory directly (tests).  Call ``start()`` before use when
    notifications are delivered asynchronously and ``shutdown()`` to flush
    pending notices.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock | None = None,
        locks: EntityLockRegistry | None = None,
        ledger: EvidenceGenerator | None = None,
        rng: random.Random | None = None,
        async_delivery: bool = True,
        queue_size: int = 1000,
        default_currency: str = "KES",
        note_number_prefix: str = "RN",
    ):
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._locks = locks or EntityLockRegistry()
        self._ledger = ledger or SimulatedLedger(rng=self._rng)

        self.directory = PartyDirectory(session_factory, self._clock)
        self.dispatcher = NotificationDispatcher(
            session_factory,
            self.directory,
            self._clock,
            async_delivery=async_delivery,
            queue_size=queue_size,
        )
        self.feed = NotificationFeed(session_factory, self._clock)
        self.bills = BillService(
            session_factory,
            self.directory,
            self.dispatcher,
            self._locks,
            self._clock,
            default_currency=default_currency,
        )
        self.deeds = DeedService(
            session_factory,
            self.directory,
            self.dispatcher,
            self._locks,
            self._ledger,
            self._clock,
            self._rng,
        )
        self.notes = NoteService(
            session_factory,
            self.directory,
            self.dispatcher,
            self._locks,
            self._ledger,
            self._clock,
            self._rng,
            number_prefix=note_number_prefix,
        )

    @classmethod
    def from_config(
        cls,
        config: SettlementConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> SettlementOrchestrator:
        """
        Build an orchestrator from configuration.

        Initializes logging and the database engine and creates any missing
        tables.  ``config`` defaults to ``get_active_config()``.
        """
        config = config or get_active_config()
        configure_logging(level=config.logging.level)
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
        )
        create_tables()

        rng = rng or random.Random()
        ledger = SimulatedLedger(
            network=config.evidence.network,
            block_floor=config.evidence.block_floor,
            block_span=config.evidence.block_span,
            rng=rng,
            token_uri_scheme=config.notes.token_uri_scheme,
        )
        logger.info(
            "orchestrator_configured",
            extra={"config_id": config.config_id, "checksum": config.checksum},
        )
        return cls(
            get_session_factory(),
            clock=clock,
            locks=EntityLockRegistry(config.locking.lock_timeout_seconds),
            ledger=ledger,
            rng=rng,
            async_delivery=config.notifications.async_delivery,
            queue_size=config.notifications.queue_size,
            default_currency=config.default_currency,
            note_number_prefix=config.notes.number_prefix,
        )

    # -- lifecycle ------------------------------------------------------

    def start(self) -> None:
        self.dispatcher.start()

    def shutdown(self, timeout: float | None = 5.0) -> None:
        """Deliver pending notices and stop the dispatcher worker."""
        self.dispatcher.stop(timeout)

    # -- execution wrapper ----------------------------------------------

    def _execute(
        self,
        operation: str,
        actor_id: UUID | None,
        call: Callable[[], Any],
    ) -> OperationResult:
        with LogContext.bind(
            correlation_id=str(_uuid4()),
            actor_id=actor_id,
            operation=operation,
        ):
            t0 = time.monotonic()
            try:
                value = call()
            except SettlementError as exc:
                logger.info(
                    "operation_rejected",
                    extra={
                        "error_code": exc.code,
                        "error_message": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return OperationResult(
                    status=OperationStatus.REJECTED,
                    error_code=exc.code,
                    message=str(exc),
                    details=_error_details(exc),
                )
            logger.debug(
                "operation_succeeded",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return OperationResult(status=OperationStatus.SUCCEEDED, value=value)

    # -- roles ----------------------------------------------------------

    def assign_role(
        self,
        party_id: UUID,
        role: PartyRole | str,
        display_name: str | None = None,
    ) -> OperationResult:
        return self._execute(
            "assign_role",
            party_id,
            lambda: self.directory.assign_role(party_id, role, display_name),
        )

    # -- bills ----------------------------------------------------------

    def submit_bill(self, submission: BillSubmission, actor: Actor) -> OperationResult:
        return self._execute(
            "submit_bill", actor.party_id, lambda: self.bills.submit(submission, actor)
        )

    def start_review(self, bill_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "start_review", actor.party_id, lambda: self.bills.start_review(bill_id, actor)
        )

    def make_offer(
        self,
        bill_id: UUID,
        discount_rate: Decimal,
        actor: Actor,
        offer_amount: Decimal | None = None,
    ) -> OperationResult:
        terms = OfferTerms(discount_rate=discount_rate, offer_amount=offer_amount)
        return self._execute(
            "make_offer", actor.party_id, lambda: self.bills.make_offer(bill_id, terms, actor)
        )

    def accept_offer(self, bill_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "accept_offer", actor.party_id, lambda: self.bills.accept_offer(bill_id, actor)
        )

    def begin_agency_review(self, bill_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "begin_agency_review",
            actor.party_id,
            lambda: self.bills.begin_agency_review(bill_id, actor),
        )

    def approve(
        self,
        bill_id: UUID,
        payment_quarters: int,
        start_quarter: str,
        actor: Actor,
        notes: str | None = None,
    ) -> OperationResult:
        terms = ApprovalTerms(
            payment_quarters=payment_quarters,
            start_quarter=start_quarter,
            notes=notes,
        )
        return self._execute(
            "approve", actor.party_id, lambda: self.bills.approve(bill_id, terms, actor)
        )

    def set_terms(self, bill_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "set_terms", actor.party_id, lambda: self.bills.set_terms(bill_id, actor)
        )

    def begin_treasury_review(self, bill_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "begin_treasury_review",
            actor.party_id,
            lambda: self.bills.begin_treasury_review(bill_id, actor),
        )

    def certify(self, bill_id: UUID, certificate_number: str, actor: Actor) -> OperationResult:
        return self._execute(
            "certify",
            actor.party_id,
            lambda: self.bills.certify(bill_id, certificate_number, actor),
        )

    def reject(self, bill_id: UUID, reason: str, actor: Actor) -> OperationResult:
        return self._execute(
            "reject", actor.party_id, lambda: self.bills.reject(bill_id, reason, actor)
        )

    def get_bill(self, bill_id: UUID) -> OperationResult:
        return self._execute("get_bill", None, lambda: self.bills.get_bill(bill_id))

    def list_bills(
        self,
        status: BillStatus | str | None = None,
        supplier_id: UUID | None = None,
        procuring_entity_id: UUID | None = None,
    ) -> OperationResult:
        return self._execute(
            "list_bills",
            None,
            lambda: self.bills.list_bills(
                status=status,
                supplier_id=supplier_id,
                procuring_entity_id=procuring_entity_id,
            ),
        )

    def bill_history(self, bill_id: UUID) -> OperationResult:
        return self._execute("bill_history", None, lambda: self.bills.get_history(bill_id))

    # -- deeds ----------------------------------------------------------

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
    ) -> OperationResult:
        return self._execute(
            "create_deed",
            actor.party_id,
            lambda: self.deeds.create_deed(
                bill_id,
                assignor_id,
                procuring_entity_id,
                principal_amount,
                discount_rate,
                purchase_price,
                content,
                actor,
            ),
        )

    def sign_deed(
        self,
        deed_id: UUID,
        signer_role: SignerRole | str,
        wallet_address: str,
        actor: Actor,
    ) -> OperationResult:
        """Sign the awaited slot; ``value`` is a ``SigningResult``."""
        return self._execute(
            "sign_deed",
            actor.party_id,
            lambda: self.deeds.sign_deed(deed_id, signer_role, wallet_address, actor),
        )

    def reject_deed(self, deed_id: UUID, reason: str, actor: Actor) -> OperationResult:
        return self._execute(
            "reject_deed", actor.party_id, lambda: self.deeds.reject_deed(deed_id, reason, actor)
        )

    def get_deed(self, deed_id: UUID) -> OperationResult:
        return self._execute("get_deed", None, lambda: self.deeds.get_deed(deed_id))

    def get_deed_for_bill(self, bill_id: UUID) -> OperationResult:
        return self._execute(
            "get_deed_for_bill", None, lambda: self.deeds.get_deed_for_bill(bill_id)
        )

    # -- notes ----------------------------------------------------------

    def generate_note(
        self,
        deed_id: UUID,
        maturity_date: date,
        actor: Actor,
        metadata: dict[str, str] | None = None,
    ) -> OperationResult:
        return self._execute(
            "generate_note",
            actor.party_id,
            lambda: self.notes.generate_note(deed_id, maturity_date, actor, metadata),
        )

    def mint_note(self, note_id: UUID, wallet_address: str, actor: Actor) -> OperationResult:
        return self._execute(
            "mint_note",
            actor.party_id,
            lambda: self.notes.mint_note(note_id, wallet_address, actor),
        )

    def list_note(self, note_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "list_note", actor.party_id, lambda: self.notes.list_note(note_id, actor)
        )

    def sell_note(
        self,
        note_id: UUID,
        buyer_id: UUID,
        sale_price: Decimal,
        actor: Actor,
    ) -> OperationResult:
        return self._execute(
            "sell_note",
            actor.party_id,
            lambda: self.notes.sell_note(note_id, buyer_id, sale_price, actor),
        )

    def redeem_note(self, note_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "redeem_note", actor.party_id, lambda: self.notes.redeem_note(note_id, actor)
        )

    def get_note(self, note_id: UUID) -> OperationResult:
        return self._execute("get_note", None, lambda: self.notes.get_note(note_id))

    # -- notifications --------------------------------------------------

    def notifications_for(
        self,
        recipient_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> OperationResult:
        return self._execute(
            "notifications_for",
            recipient_id,
            lambda: self.feed.list_for(recipient_id, unread_only=unread_only, limit=limit),
        )

    def unread_count(self, recipient_id: UUID) -> OperationResult:
        return self._execute(
            "unread_count", recipient_id, lambda: self.feed.unread_count(recipient_id)
        )

    def mark_read(self, notification_id: UUID) -> OperationResult:
        return self._execute(
            "mark_read", None, lambda: self.feed.mark_read(notification_id)
        )

    def mark_all_read(self, recipient_id: UUID) -> OperationResult:
        return self._execute(
            "mark_all_read", recipient_id, lambda: self.feed.mark_all_read(recipient_id)
        )
