"""
Settlement Kernel

The multi-party authorization core for converting government payables into
tradable receivables:
- Bill lifecycle state machine with fixed role authority
- Tripartite deed signing with deterministic content hashing
- Receivable note issuance and one-shot minting
- Post-commit notification fan-out
- Per-entity serialization of every check-then-act transition
"""

__version__ = "0.1.0"
