"""
memory.py — In-process provider

Keeps remote objects in memory; everything is discarded with the store.
Used by tests and for dry runs. Several provider instances can share one
MemoryStore to play the part of devices syncing through the same remote.
"""

from __future__ import annotations
import logging
import threading
import uuid
from typing import Dict, Optional, Tuple

from ..errors import ConflictError, NotFoundError
from .base import RemoteSnapshot

logger = logging.getLogger(__name__)


class MemoryStore:
    """Object name -> (bytes, write counter)."""

    def __init__(self) -> None:
        self.store_id = uuid.uuid4().hex[:12]
        self._lock = threading.Lock()
        self._objects: Dict[str, Tuple[bytes, int]] = {}
        self.push_count = 0

    def read(self, object_name: str) -> Optional[Tuple[bytes, str]]:
        with self._lock:
            item = self._objects.get(object_name)
        if item is None:
            return None
        return item[0], str(item[1])

    def compare_and_swap(self, object_name: str, data: bytes, expected_marker: Optional[str]) -> str:
        with self._lock:
            current = self._objects.get(object_name)
            current_marker = str(current[1]) if current is not None else None
            if current_marker != expected_marker:
                raise ConflictError(
                    f"{object_name}: expected marker {expected_marker!r}, remote has {current_marker!r}"
                )
            counter = current[1] + 1 if current is not None else 1
            self._objects[object_name] = (bytes(data), counter)
            self.push_count += 1
            return str(counter)

    def delete(self, object_name: str) -> None:
        with self._lock:
            self._objects.pop(object_name, None)


class MemoryProvider:
    """
    Provider over a MemoryStore. Without a ``name`` the id is derived from
    the store, so separate stores never share SyncState records.
    """

    def __init__(self, object_name: str, store: Optional[MemoryStore] = None, name: Optional[str] = None):
        self.object_name = object_name
        self.store = store if store is not None else MemoryStore()
        self.provider_id = f"memory:{name if name is not None else self.store.store_id}"

    def fetch(self, timeout: Optional[float] = None) -> RemoteSnapshot:
        item = self.store.read(self.object_name)
        if item is None:
            raise NotFoundError("Remote object", self.object_name)
        data, marker = item
        logger.debug("memory fetch %s -> marker %s", self.object_name, marker)
        return RemoteSnapshot(ciphertext=data, marker=marker)

    def push(self, ciphertext: bytes, expected_marker: Optional[str], timeout: Optional[float] = None) -> str:
        marker = self.store.compare_and_swap(self.object_name, ciphertext, expected_marker)
        logger.debug("memory push %s -> marker %s", self.object_name, marker)
        return marker

    def ping(self, timeout: Optional[float] = None) -> None:
        return None
