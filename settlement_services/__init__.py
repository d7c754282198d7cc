"""
Outer service layer.

Exposes ``SettlementOrchestrator``, the composition root that wires the
kernel services from ``settlement_config`` and converts typed kernel errors
into ``OperationResult`` values for the UI/API layer.
"""

from settlement_services.orchestrator import (
    OperationResult,
    OperationStatus,
    SettlementOrchestrator,
)

__all__ = [
    "OperationResult",
    "OperationStatus",
    "SettlementOrchestrator",
]
