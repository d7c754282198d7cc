"""Utility modules for the settlement kernel."""

from settlement_kernel.utils.hashing import (
    canonicalize_json,
    hash_deed_content,
    hash_payload,
    sign_content_hash,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_deed_content",
    "sign_content_hash",
]
