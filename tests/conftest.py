"""
Pytest fixtures for the settlement core test suite.

Provides:
- A file-backed SQLite database per test (shared across worker threads)
- Deterministic clock and seeded randomness
- Wired kernel services with inline notification delivery
- Parties holding each role, and builders that walk bills and deeds
  through their lifecycles

Environment Variables:
- SETTLEMENT_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of the per-test SQLite file.
"""

import json
import logging
import os
import random
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.domain.bill import ApprovalTerms, BillStatus, BillSubmission, OfferTerms
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.deed import DeedContent
from settlement_kernel.domain.evidence import SimulatedLedger
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.services import (
    BillService,
    DeedService,
    NoteService,
    NotificationDispatcher,
    NotificationFeed,
    PartyDirectory,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, bill_service):
            ...
            assert any(r["message"] == "bill_submitted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: requires a PostgreSQL database")
    config.addinivalue_line("markers", "slow_locks: exercises lock waits and timeouts")


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return os.environ.get("SETTLEMENT_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'settlement.db'}"


@pytest.fixture
def session_factory(database_url):
    """Fresh schema per test; yields the session factory."""
    init_engine_from_url(database_url)
    if not database_url.startswith("sqlite"):
        drop_tables()
    create_tables()
    yield get_session_factory()
    reset_engine()


# =============================================================================
# Kernel wiring
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def rng():
    return random.Random(20250701)


@pytest.fixture
def locks():
    return EntityLockRegistry(timeout_seconds=5.0)


@pytest.fixture
def ledger(rng):
    return SimulatedLedger(rng=rng)


@pytest.fixture
def directory(session_factory, clock):
    return PartyDirectory(session_factory, clock)


@pytest.fixture
def dispatcher(session_factory, directory, clock):
    """Inline delivery: notices are written before enqueue() returns."""
    return NotificationDispatcher(session_factory, directory, clock, async_delivery=False)


@pytest.fixture
def feed(session_factory, clock):
    return NotificationFeed(session_factory, clock)


@pytest.fixture
def bill_service(session_factory, directory, dispatcher, locks, clock):
    return BillService(session_factory, directory, dispatcher, locks, clock)


@pytest.fixture
def deed_service(session_factory, directory, dispatcher, locks, ledger, clock, rng):
    return DeedService(session_factory, directory, dispatcher, locks, ledger, clock, rng)


@pytest.fixture
def note_service(session_factory, directory, dispatcher, locks, ledger, clock, rng):
    return NoteService(session_factory, directory, dispatcher, locks, ledger, clock, rng)


# =============================================================================
# Parties
# =============================================================================


def _party(directory, role, name):
    actor = Actor(uuid4(), role)
    directory.assign_role(actor.party_id, role, name)
    return actor


@pytest.fixture
def supplier(directory):
    return _party(directory, PartyRole.SUPPLIER, "Acme Road Works")


@pytest.fixture
def spv(directory):
    return _party(directory, PartyRole.SPV, "Receivables SPV")


@pytest.fixture
def mda(directory):
    return _party(directory, PartyRole.MDA, "Ministry of Roads")


@pytest.fixture
def treasury(directory):
    return _party(directory, PartyRole.TREASURY, "National Treasury")


@pytest.fixture
def admin(directory):
    return _party(directory, PartyRole.ADMIN, "Platform Admin")


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def wallet():
    """Factory for distinct well-formed wallet addresses."""
    counter = iter(range(1, 10_000))

    def _make() -> str:
        return "0x" + format(next(counter), "040x")

    return _make


@pytest.fixture
def deed_content():
    return DeedContent(
        title="Tripartite Deed of Assignment",
        governing_law="Laws of Kenya",
        clauses=(
            "The Assignor assigns the receivable to the Assignee.",
            "The Procuring Entity acknowledges the assignment.",
            "The Servicing Agent pays installments to the Assignee.",
        ),
    )


# Actions walking a bill forward, in lifecycle order.
_PATH = (
    BillStatus.SUBMITTED,
    BillStatus.UNDER_REVIEW,
    BillStatus.OFFER_MADE,
    BillStatus.OFFER_ACCEPTED,
    BillStatus.MDA_REVIEWING,
    BillStatus.MDA_APPROVED,
    BillStatus.TERMS_SET,
)


@pytest.fixture
def submit_bill(bill_service, supplier, mda):
    """Factory submitting a bill from ``supplier`` to ``mda``."""
    counter = iter(range(1, 10_000))

    def _submit(amount=Decimal("92000000"), **overrides):
        fields = dict(
            supplier_id=supplier.party_id,
            procuring_entity_id=mda.party_id,
            invoice_number=f"INV-{next(counter):04d}",
            amount=amount,
            invoice_date=date(2025, 6, 1),
            description="Resurfacing of the northern bypass",
        )
        fields.update(overrides)
        return bill_service.submit(BillSubmission(**fields), supplier)

    return _submit


@pytest.fixture
def advance_bill(bill_service, supplier, spv, mda):
    """Factory moving a submitted bill forward to ``target`` (up to terms_set)."""

    def _advance(bill, target, discount_rate=Decimal("5"), quarters=6, start_quarter="Q3 2025"):
        steps = {
            BillStatus.UNDER_REVIEW: lambda b: bill_service.start_review(b.id, spv),
            BillStatus.OFFER_MADE: lambda b: bill_service.make_offer(
                b.id, OfferTerms(discount_rate=discount_rate), spv
            ),
            BillStatus.OFFER_ACCEPTED: lambda b: bill_service.accept_offer(b.id, supplier),
            BillStatus.MDA_REVIEWING: lambda b: bill_service.begin_agency_review(b.id, mda),
            BillStatus.MDA_APPROVED: lambda b: bill_service.approve(
                b.id, ApprovalTerms(payment_quarters=quarters, start_quarter=start_quarter), mda
            ),
            BillStatus.TERMS_SET: lambda b: bill_service.set_terms(b.id, mda),
        }
        for status in _PATH[_PATH.index(bill.status) + 1 : _PATH.index(target) + 1]:
            bill = steps[status](bill)
        return bill

    return _advance


@pytest.fixture
def create_deed(deed_service, spv, deed_content):
    """Factory creating a deed over the bill's accepted offer."""

    def _create(bill):
        return deed_service.create_deed(
            bill.id,
            bill.supplier_id,
            bill.procuring_entity_id,
            bill.amount,
            bill.offer_discount_rate,
            bill.offer_amount,
            deed_content,
            spv,
        )

    return _create


@pytest.fixture
def execute_deed(deed_service, supplier, mda, treasury, wallet):
    """Factory collecting all three signatures in order."""

    def _execute(deed):
        results = []
        for role, actor in (
            (SignerRole.ASSIGNOR, supplier),
            (SignerRole.PROCURING_ENTITY, mda),
            (SignerRole.SERVICING_AGENT, treasury),
        ):
            results.append(deed_service.sign_deed(deed.id, role, wallet(), actor))
        return results

    return _execute
