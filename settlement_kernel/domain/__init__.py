"""
Pure domain layer.

Frozen value objects, enums and workflow definitions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (time arrives through an injected Clock)
"""

from settlement_kernel.domain.bill import (
    BILL_WORKFLOW,
    DEED_ELIGIBLE_STATUSES,
    REJECTION_AUTHORITY,
    TERMINAL_BILL_STATUSES,
    ApprovalTerms,
    Bill,
    BillStatus,
    BillStatusChange,
    BillSubmission,
    Installment,
    OfferTerms,
)
from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from settlement_kernel.domain.deed import (
    DEED_WORKFLOW,
    Deed,
    DeedContent,
    DeedStatus,
    ExecutionRecord,
    SignatureSlot,
    SigningResult,
)
from settlement_kernel.domain.evidence import (
    EvidenceGenerator,
    ExecutionEvidence,
    MintEvidence,
    SimulatedLedger,
)
from settlement_kernel.domain.note import NOTE_WORKFLOW, NoteStatus, ReceivableNote
from settlement_kernel.domain.notification import (
    Notice,
    NotificationCategory,
    NotificationRecord,
    RecipientSelector,
)
from settlement_kernel.domain.parties import (
    SIGNING_ORDER,
    Actor,
    PartyRole,
    RoleAssignment,
    SignerRole,
)
from settlement_kernel.domain.workflow import Transition, Workflow

__all__ = [
    # Parties
    "Actor",
    "PartyRole",
    "RoleAssignment",
    "SignerRole",
    "SIGNING_ORDER",
    # Bills
    "ApprovalTerms",
    "Bill",
    "BillStatus",
    "BillStatusChange",
    "BillSubmission",
    "Installment",
    "OfferTerms",
    "BILL_WORKFLOW",
    "DEED_ELIGIBLE_STATUSES",
    "REJECTION_AUTHORITY",
    "TERMINAL_BILL_STATUSES",
    # Deeds
    "Deed",
    "DeedContent",
    "DeedStatus",
    "ExecutionRecord",
    "SignatureSlot",
    "SigningResult",
    "DEED_WORKFLOW",
    # Notes
    "NoteStatus",
    "ReceivableNote",
    "NOTE_WORKFLOW",
    # Notifications
    "Notice",
    "NotificationCategory",
    "NotificationRecord",
    "RecipientSelector",
    # Evidence
    "EvidenceGenerator",
    "ExecutionEvidence",
    "MintEvidence",
    "SimulatedLedger",
    # Infrastructure
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Transition",
    "Workflow",
]
