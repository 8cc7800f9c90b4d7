"""
sync.py — Strongbox Sync Engine

Reconciles one local vault with one provider per pass. Passes run after
local edits are already durably committed and never interleave with them:
the whole pass holds the vault's exclusive section.

Phases:

    IDLE -> FETCHING -> COMPARING -> NOOP_DONE
                                  -> MERGING -> COMMITTING -> DONE
         (any phase)             -> FAILED

Decision table, with L/R the local/remote fingerprints and B the baseline
recorded in SyncState after the last successful pass:

    L == R                 nothing to do
    R == B, L != B         local ahead: push
    L == B, R != B         remote ahead: replace local book, commit
    otherwise              diverged: merge, commit, push

Pushes are compare-and-swap against the marker seen at fetch time. A
ConflictError restarts the pass once; a second one raises
SyncConflictError. SyncState advances only after the local commit and the
provider acknowledgement have both succeeded.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from . import codec
from .book import Book
from .errors import ConfigurationError, ConflictError, NotFoundError, StrongboxError, SyncConflictError
from .merge import TieBreak, merge_books
from .providers.base import Provider, RemoteSnapshot

if TYPE_CHECKING:
    from .vault import Vault

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    COMPARING = "comparing"
    NOOP_DONE = "noop_done"
    MERGING = "merging"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class SyncAction(str, enum.Enum):
    NOOP = "noop"
    CREATED = "created"
    PUSHED = "pushed"
    PULLED = "pulled"
    MERGED = "merged"


@dataclass
class SyncOutcome:
    """Result of one (vault, provider) pass."""
    provider_id: str
    phase: SyncPhase
    action: Optional[SyncAction]
    revision: Optional[int] = None
    fingerprint: Optional[str] = None
    marker: Optional[str] = None
    attempts: int = 1
    conflicts: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.phase in (SyncPhase.DONE, SyncPhase.NOOP_DONE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "phase": self.phase.value,
            "action": self.action.value if self.action else None,
            "revision": self.revision,
            "fingerprint": self.fingerprint,
            "marker": self.marker,
            "attempts": self.attempts,
            "conflict_count": len(self.conflicts),
            "conflicts": self.conflicts,
            "error": self.error,
        }


class SyncEngine:
    """Runs sync passes for one vault."""

    def __init__(
        self,
        vault: "Vault",
        timeout: Optional[float] = None,
        tie_break: TieBreak = TieBreak.DETERMINISTIC,
    ):
        self.vault = vault
        self.timeout = timeout
        self.tie_break = tie_break
        self.phase = SyncPhase.IDLE
        self.transitions: List[SyncPhase] = []

    def _enter(self, phase: SyncPhase) -> None:
        self.phase = phase
        self.transitions.append(phase)
        logger.debug("sync %s: %s", self.vault.path.name, phase.value)

    def _advance_state(self, provider: Provider, book: Book, marker: str) -> None:
        self.vault.state_store.put(
            self.vault.vault_id, provider.provider_id, book.revision, book.fingerprint(), marker,
        )

    def _outcome(
        self,
        provider: Provider,
        action: SyncAction,
        book: Book,
        marker: str,
        attempt: int,
        conflicts: Optional[List[str]] = None,
    ) -> SyncOutcome:
        return SyncOutcome(
            provider_id=provider.provider_id,
            phase=self.phase,
            action=action,
            revision=book.revision,
            fingerprint=book.fingerprint(),
            marker=marker,
            attempts=attempt,
            conflicts=conflicts or [],
        )

    # -- one attempt --------------------------------------------------------

    def _fetch(self, provider: Provider) -> Optional[RemoteSnapshot]:
        self._enter(SyncPhase.FETCHING)
        try:
            return provider.fetch(timeout=self.timeout)
        except NotFoundError:
            return None

    def _attempt(self, provider: Provider, attempt: int) -> SyncOutcome:
        snapshot = self._fetch(provider)
        self._enter(SyncPhase.COMPARING)
        local = self.vault.book

        if snapshot is None:
            self._enter(SyncPhase.COMMITTING)
            marker = provider.push(codec.encode(local, self.vault.key), None, timeout=self.timeout)
            self._advance_state(provider, local, marker)
            self._enter(SyncPhase.DONE)
            return self._outcome(provider, SyncAction.CREATED, local, marker, attempt)

        # A decode failure means keys differ: a configuration problem, not a merge case.
        remote = codec.decode(snapshot.ciphertext, self.vault.key)
        if remote.origin != local.origin:
            raise ConfigurationError(
                f"{provider.provider_id} holds a different book (origin {remote.origin})"
            )

        baseline = self.vault.state_store.get(self.vault.vault_id, provider.provider_id)
        base_fp = baseline.fingerprint if baseline else None
        local_fp = local.fingerprint()
        remote_fp = remote.fingerprint()

        if local_fp == remote_fp:
            if baseline is None or baseline.fingerprint != local_fp or baseline.marker != snapshot.marker:
                self._advance_state(provider, local, snapshot.marker)
            self._enter(SyncPhase.NOOP_DONE)
            return self._outcome(provider, SyncAction.NOOP, local, snapshot.marker, attempt)

        if remote_fp == base_fp:
            self._enter(SyncPhase.COMMITTING)
            marker = provider.push(codec.encode(local, self.vault.key), snapshot.marker, timeout=self.timeout)
            self._advance_state(provider, local, marker)
            self._enter(SyncPhase.DONE)
            return self._outcome(provider, SyncAction.PUSHED, local, marker, attempt)

        if local_fp == base_fp:
            self._enter(SyncPhase.COMMITTING)
            self.vault.replace_book(remote)
            self._advance_state(provider, remote, snapshot.marker)
            self._enter(SyncPhase.DONE)
            return self._outcome(provider, SyncAction.PULLED, remote, snapshot.marker, attempt)

        self._enter(SyncPhase.MERGING)
        result = merge_books(local, remote, self.tie_break)
        logger.info(
            "sync %s: merging with %s (%d new versions, conflicts: %s)",
            self.vault.path.name, provider.provider_id, result.added_versions, result.conflicts or "none",
        )
        self._enter(SyncPhase.COMMITTING)
        self.vault.replace_book(result.book)
        marker = provider.push(codec.encode(result.book, self.vault.key), snapshot.marker, timeout=self.timeout)
        self._advance_state(provider, result.book, marker)
        self._enter(SyncPhase.DONE)
        return self._outcome(provider, SyncAction.MERGED, result.book, marker, attempt, result.conflicts)

    # -- public -------------------------------------------------------------

    def run(self, provider: Provider) -> SyncOutcome:
        """
        Run one pass against ``provider``.

        Raises:
            SyncConflictError: the remote changed under us twice in a row.
            IntegrityError / FormatVersionError: the remote cannot be read
                with this vault's key.
            TransportError: provider I/O failed or timed out.
        """
        self.transitions = []
        self._enter(SyncPhase.IDLE)
        last_conflict: Optional[ConflictError] = None
        with self.vault.exclusive():
            for attempt in range(1, MAX_ATTEMPTS + 1):
                try:
                    outcome = self._attempt(provider, attempt)
                except ConflictError as exc:
                    last_conflict = exc
                    logger.warning(
                        "sync %s: remote %s changed during pass (attempt %d/%d)",
                        self.vault.path.name, provider.provider_id, attempt, MAX_ATTEMPTS,
                    )
                    continue
                except Exception:
                    self._enter(SyncPhase.FAILED)
                    raise
                logger.info(
                    "sync %s with %s: %s (revision %s)",
                    self.vault.path.name, provider.provider_id,
                    outcome.action.value if outcome.action else None, outcome.revision,
                )
                return outcome
        self._enter(SyncPhase.FAILED)
        raise SyncConflictError(provider.provider_id, MAX_ATTEMPTS) from last_conflict

    def run_all(self, providers: Iterable[Provider]) -> List[SyncOutcome]:
        """
        One pass per provider, one after another. A failing provider is
        reported in its outcome and does not stop the others.
        """
        outcomes: List[SyncOutcome] = []
        for provider in providers:
            try:
                outcomes.append(self.run(provider))
            except StrongboxError as exc:
                logger.error("sync %s with %s failed: %s", self.vault.path.name, provider.provider_id, exc)
                outcomes.append(SyncOutcome(
                    provider_id=provider.provider_id,
                    phase=SyncPhase.FAILED,
                    action=None,
                    error=str(exc),
                ))
        return outcomes
