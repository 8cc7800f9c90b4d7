"""
sync_state.py — Persisted record of the last reconciliation per (vault, provider)

The record is what lets a sync pass tell "local changed since last sync"
from "remote changed since last sync" without re-fetching history. It is
only ever advanced after the local commit and the provider acknowledgement
have both succeeded.

File format (canonical JSON, written through atomic_write):

    {"version": 1,
     "records": {"<vault_id>:<provider_id>": {"revision": 6,
                                              "fingerprint": "<hex>",
                                              "marker": "<opaque>",
                                              "synced_at": "<iso8601>"}}}
"""

from __future__ import annotations
import datetime
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .atomic import atomic_write
from .canonical_json import canonical_bytes
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class SyncRecord:
    revision: int
    fingerprint: str
    marker: Optional[str]
    synced_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revision": self.revision,
            "fingerprint": self.fingerprint,
            "marker": self.marker,
            "synced_at": self.synced_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncRecord":
        return cls(
            revision=int(data["revision"]),
            fingerprint=str(data["fingerprint"]),
            marker=data.get("marker"),
            synced_at=str(data.get("synced_at", "")),
        )


def _record_key(vault_id: str, provider_id: str) -> str:
    return f"{vault_id}:{provider_id}"


class SyncStateStore:
    """
    JSON-backed SyncState. Pass ``path=None`` for an in-memory store (tests,
    dry runs); otherwise every put() is committed atomically.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._records: Dict[str, SyncRecord] = self._load()

    def _load(self) -> Dict[str, SyncRecord]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if raw.get("version") != STATE_VERSION:
                raise ConfigurationError(f"{self.path}: unsupported sync state version {raw.get('version')!r}")
            return {k: SyncRecord.from_dict(v) for k, v in raw["records"].items()}
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigurationError(f"{self.path}: corrupt sync state ({exc})") from exc

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "version": STATE_VERSION,
            "records": {k: r.to_dict() for k, r in self._records.items()},
        }
        atomic_write(self.path, canonical_bytes(document))

    def get(self, vault_id: str, provider_id: str) -> Optional[SyncRecord]:
        with self._lock:
            return self._records.get(_record_key(vault_id, provider_id))

    def put(
        self,
        vault_id: str,
        provider_id: str,
        revision: int,
        fingerprint: str,
        marker: Optional[str],
    ) -> SyncRecord:
        record = SyncRecord(
            revision=revision,
            fingerprint=fingerprint,
            marker=marker,
            synced_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        key = _record_key(vault_id, provider_id)
        with self._lock:
            previous = self._records.get(key)
            self._records[key] = record
            try:
                self._save()
            except Exception:
                # Keep memory consistent with what is durable.
                if previous is None:
                    del self._records[key]
                else:
                    self._records[key] = previous
                raise
        logger.debug("sync state %s -> revision %d, marker %s", key, revision, marker)
        return record

    def forget(self, vault_id: str, provider_id: str) -> None:
        key = _record_key(vault_id, provider_id)
        with self._lock:
            if self._records.pop(key, None) is not None:
                self._save()
