"""Services for the settlement kernel (write side and feeds)."""

from settlement_kernel.services.bill_service import BillService
from settlement_kernel.services.deed_service import DeedService
from settlement_kernel.services.note_service import NoteService
from settlement_kernel.services.notification_dispatcher import NotificationDispatcher
from settlement_kernel.services.notification_feed import NotificationFeed
from settlement_kernel.services.party_directory import PartyDirectory

__all__ = [
    "BillService",
    "DeedService",
    "NoteService",
    "NotificationDispatcher",
    "NotificationFeed",
    "PartyDirectory",
]
