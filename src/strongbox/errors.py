"""
errors.py — Strongbox Error Taxonomy

Every failure the library surfaces carries a stable code so callers (and
the CLI front end living outside this package) can map it to a message or
an exit status without parsing text.

  SBX_E0xx  container integrity and format
  SBX_E1xx  caller misuse on entries and names
  SBX_E2xx  providers and synchronization
  SBX_E3xx  local durable commit
  SBX_E4xx  configuration
"""

from typing import Optional

__all__ = [
    "StrongboxError",
    "IntegrityError",
    "FormatVersionError",
    "DuplicateIdError",
    "NotFoundError",
    "NameValidationError",
    "TransportError",
    "ConflictError",
    "SyncConflictError",
    "TransferStringError",
    "AtomicCommitError",
    "LockError",
    "ConfigurationError",
]


class StrongboxError(Exception):
    """Base class for all Strongbox errors."""
    def __init__(self, code: str, message: str, context: Optional[str] = None):
        self.code = code
        self.message = message
        self.context = context

        full_msg = f"[{code}] {message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)


# Container errors (E0xx)
class IntegrityError(StrongboxError):
    """Ciphertext was tampered with, the key is wrong, or the container is malformed.

    The caller never learns which check failed and
    never receives partial plaintext.
    """
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E001", "Vault data failed integrity verification (wrong key or corrupted data).", context)


class FormatVersionError(StrongboxError):
    def __init__(self, version: int, context: Optional[str] = None):
        self.version = version
        super().__init__("SBX_E002", f"Unsupported vault format version {version}.", context)


# Entry / name errors (E1xx)
class DuplicateIdError(StrongboxError):
    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__("SBX_E100", "An entry with this id already exists.", entry_id)


class NotFoundError(StrongboxError):
    def __init__(self, what: str, context: Optional[str] = None):
        self.what = what
        super().__init__("SBX_E101", f"{what} not found.", context)


class NameValidationError(StrongboxError):
    def __init__(self, reason: str, name: str):
        self.reason = reason
        self.name = name
        super().__init__("SBX_E102", f"Invalid name ({reason}).", repr(name))


# Provider / sync errors (E2xx)
class TransportError(StrongboxError):
    def __init__(self, context: Optional[str] = None, timeout: bool = False):
        self.timeout = timeout
        message = "Provider call timed out." if timeout else "Provider transport failed."
        super().__init__("SBX_E200", message, context)


class ConflictError(StrongboxError):
    """The remote marker no longer matches the expected prior marker."""
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E201", "Remote changed since it was fetched (compare-and-swap failed).", context)


class SyncConflictError(StrongboxError):
    def __init__(self, provider_id: str, attempts: int):
        self.provider_id = provider_id
        self.attempts = attempts
        super().__init__(
            "SBX_E202",
            f"Remote kept changing during synchronization; gave up after {attempts} attempts.",
            provider_id,
        )


class TransferStringError(StrongboxError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E203", "Invalid provider transfer string.", context)


# Commit errors (E3xx)
class AtomicCommitError(StrongboxError):
    """Writing, syncing or renaming the new snapshot failed; the previous file is intact."""
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E300", "Atomic commit failed; previous vault state is unchanged.", context)


class LockError(StrongboxError):
    """The lock file next to the vault could not be created or locked."""
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E301", "Could not acquire the vault's exclusive section.", context)


# Configuration errors (E4xx)
class ConfigurationError(StrongboxError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("SBX_E400", "Invalid configuration.", context)
