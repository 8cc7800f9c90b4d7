"""
canonical_json.py — Strongbox canonical serialization

Deterministic JSON used for everything that is hashed or sealed:

- UTF-8 encoding
- Object keys sorted lexicographically by Unicode codepoint
- No insignificant whitespace
- Integers and strings only in hashed structures (no floats in books)
- No NaN/Infinity (raises ValueError)

Two books with identical logical content serialize to identical bytes,
which is what makes fingerprints comparable across devices.
"""

from __future__ import annotations
import hashlib
import json
from typing import Any


def canonical_dumps(obj: Any) -> str:
    """Return canonical JSON string with sorted keys and no whitespace."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(obj: Any) -> bytes:
    return canonical_dumps(obj).encode("utf-8")


def canonical_loads(data: bytes) -> Any:
    """Parse canonical JSON bytes, rejecting NaN/Infinity literals."""
    def _reject(token: str) -> Any:
        raise ValueError(f"non-finite number {token!r} in canonical JSON")

    return json.loads(data.decode("utf-8"), parse_constant=_reject)


def canonical_hash(obj: Any) -> str:
    """Return lowercase hex SHA-256 of the canonical JSON bytes."""
    return hashlib.sha256(canonical_bytes(obj)).hexdigest()
