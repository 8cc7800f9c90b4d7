"""Strongbox: local-first encrypted password vaults with history and sync.

The ``Vault`` handle is the entry point for callers; lower layers (codec,
atomic writer, merge, providers) are importable for tooling and tests.

Example:
    from strongbox import Vault, FilesystemProvider, init_repository

    vault = Vault.create("work.sbx", master_secret)
    vault.create_entry("jira", {"username": "me", "secret": "s3cret"})

    repo = init_repository("/mnt/usb/strongbox")
    outcome = vault.sync(FilesystemProvider(repo, "work.sbx"))
    print(outcome.action, outcome.revision)
"""

from .book import Book, Entry, EntryHistory, EntryMetadata, EntryVersion
from .canonical_json import canonical_bytes, canonical_dumps, canonical_hash
from .codec import decode, encode, read_header
from .config import StrongboxConfig, load_config, save_config, vault_path
from .crypto import KdfParams, VaultKey, derive_key, seal, unseal
from .errors import (
    AtomicCommitError,
    LockError,
    ConfigurationError,
    ConflictError,
    DuplicateIdError,
    FormatVersionError,
    IntegrityError,
    NameValidationError,
    NotFoundError,
    StrongboxError,
    SyncConflictError,
    TransferStringError,
    TransportError,
)
from .merge import MergeResult, TieBreak, merge_books
from .providers import (
    FilesystemProvider,
    HostedRepositoryProvider,
    MemoryProvider,
    MemoryStore,
    Provider,
    ProviderConfig,
    ProviderKind,
    RemoteSnapshot,
    init_repository,
    load_provider,
)
from .sync import SyncAction, SyncEngine, SyncOutcome, SyncPhase
from .sync_state import SyncRecord, SyncStateStore
from .vault import Vault

__version__ = "0.3.0"

__all__ = [
    "Vault",
    "Book",
    "Entry",
    "EntryHistory",
    "EntryMetadata",
    "EntryVersion",
    "canonical_bytes",
    "canonical_dumps",
    "canonical_hash",
    "decode",
    "encode",
    "read_header",
    "StrongboxConfig",
    "load_config",
    "save_config",
    "vault_path",
    "KdfParams",
    "VaultKey",
    "derive_key",
    "seal",
    "unseal",
    "AtomicCommitError",
    "LockError",
    "ConfigurationError",
    "ConflictError",
    "DuplicateIdError",
    "FormatVersionError",
    "IntegrityError",
    "NameValidationError",
    "NotFoundError",
    "StrongboxError",
    "SyncConflictError",
    "TransferStringError",
    "TransportError",
    "MergeResult",
    "TieBreak",
    "merge_books",
    "FilesystemProvider",
    "HostedRepositoryProvider",
    "MemoryProvider",
    "MemoryStore",
    "Provider",
    "ProviderConfig",
    "ProviderKind",
    "RemoteSnapshot",
    "init_repository",
    "load_provider",
    "SyncAction",
    "SyncEngine",
    "SyncOutcome",
    "SyncPhase",
    "SyncRecord",
    "SyncStateStore",
    "__version__",
]
