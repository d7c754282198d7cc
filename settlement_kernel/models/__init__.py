"""ORM models for the settlement kernel."""

from settlement_kernel.models.bill import (
    BillInstallmentModel,
    BillModel,
    BillStatusChangeModel,
)
from settlement_kernel.models.deed import DeedModel
from settlement_kernel.models.note import ReceivableNoteModel
from settlement_kernel.models.notification import NotificationModel
from settlement_kernel.models.party_role import PartyRoleModel

__all__ = [
    "BillModel",
    "BillInstallmentModel",
    "BillStatusChangeModel",
    "DeedModel",
    "ReceivableNoteModel",
    "NotificationModel",
    "PartyRoleModel",
    "import_all_models",
]


def import_all_models() -> tuple[type, ...]:
    """Return every mapped model; importing this package registers the tables."""
    return (
        PartyRoleModel,
        BillModel,
        BillInstallmentModel,
        BillStatusChangeModel,
        DeedModel,
        ReceivableNoteModel,
        NotificationModel,
    )
