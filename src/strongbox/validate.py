"""Name validation for vaults and entries."""

from __future__ import annotations
import string

from .errors import NameValidationError

_VAULT_NAME_CHARS = frozenset(string.ascii_letters + string.digits + "._")


def validate_vault_name(name: str) -> str:
    """
    Vault names map directly to file names: [A-Za-z0-9._]+ with no "..".

    Returns the name unchanged so callers can validate inline.
    """
    if not name:
        raise NameValidationError("empty", name)
    if not all(c in _VAULT_NAME_CHARS for c in name):
        raise NameValidationError("invalid_characters", name)
    if ".." in name:
        raise NameValidationError("invalid_pattern", name)
    return name


def validate_entry_id(entry_id: str) -> str:
    if not isinstance(entry_id, str) or not entry_id:
        raise NameValidationError("empty", str(entry_id))
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in entry_id):
        raise NameValidationError("invalid_characters", entry_id)
    return entry_id
