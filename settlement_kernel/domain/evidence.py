"""
Ledger evidence -- pluggable generator of transaction identifiers.

Responsibility:
    Defines the ``EvidenceGenerator`` protocol the deed and note services
    call when a deed is fully executed or a note is minted, and
    ``SimulatedLedger``, the default implementation that fabricates
    well-formed identifiers without touching any network.

Architecture position:
    Kernel > Domain.  ``SimulatedLedger`` draws from an injected
    ``random.Random`` so a seeded instance is fully reproducible.

Invariants enforced:
    - Transaction hashes are ``0x`` + 64 lowercase hex characters.
    - Registry addresses are ``0x`` + 40 lowercase hex characters.
    - Block numbers fall in ``[block_floor, block_floor + block_span)``.

Non-goals:
    No consensus, no smart contracts, no RPC.  A real ledger client
    implements the same protocol.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


_WALLET_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def is_wallet_address(value: object) -> bool:
    """True for an EVM-style address: ``0x`` followed by 40 hex characters."""
    return isinstance(value, str) and _WALLET_RE.fullmatch(value) is not None


@dataclass(frozen=True)
class ExecutionEvidence:
    """Evidence recorded for a fully executed deed."""

    tx_hash: str
    block_number: int
    gas_used: int
    network: str


@dataclass(frozen=True)
class MintEvidence:
    """Evidence recorded for a minted receivable note."""

    token_id: str
    registry_address: str
    tx_hash: str
    network: str


@runtime_checkable
class EvidenceGenerator(Protocol):
    """Ledger client used by the signing and minting services."""

    @property
    def network(self) -> str: ...

    def record_execution(self, content_hash: str) -> ExecutionEvidence: ...

    def record_mint(self, note_number: str) -> MintEvidence: ...

    def token_uri(self) -> str: ...


class SimulatedLedger:
    """Evidence generator producing random, well-formed identifiers."""

    GAS_FLOOR = 50_000
    GAS_SPAN = 100_000
    TOKEN_ID_SPAN = 1_000_000

    def __init__(
        self,
        network: str = "simulated",
        block_floor: int = 5_000_000,
        block_span: int = 1_000_000,
        rng: random.Random | None = None,
        token_uri_scheme: str = "ipfs",
    ) -> None:
        if block_floor < 0:
            raise ValueError("block_floor cannot be negative")
        if block_span <= 0:
            raise ValueError("block_span must be positive")
        self._network = network
        self._block_floor = block_floor
        self._block_span = block_span
        self._rng = rng or random.Random()
        self._token_uri_scheme = token_uri_scheme

    @property
    def network(self) -> str:
        return self._network

    def _hex(self, n_bytes: int) -> str:
        return self._rng.getrandbits(n_bytes * 8).to_bytes(n_bytes, "big").hex()

    def record_execution(self, content_hash: str) -> ExecutionEvidence:
        return ExecutionEvidence(
            tx_hash=f"0x{self._hex(32)}",
            block_number=self._block_floor + self._rng.randrange(self._block_span),
            gas_used=self.GAS_FLOOR + self._rng.randrange(self.GAS_SPAN),
            network=self._network,
        )

    def record_mint(self, note_number: str) -> MintEvidence:
        return MintEvidence(
            token_id=str(self._rng.randrange(self.TOKEN_ID_SPAN)),
            registry_address=f"0x{self._hex(20)}",
            tx_hash=f"0x{self._hex(32)}",
            network=self._network,
        )

    def token_uri(self) -> str:
        return f"{self._token_uri_scheme}://Qm{self._hex(32)}"
