"""
base.py — Sync provider contract

Every backend exposes the same small capability set and nothing more:

  fetch(timeout)                         -> RemoteSnapshot
  push(ciphertext, expected_marker, timeout) -> new marker
  ping(timeout)                          -> None (access and sanity check)

push() is compare-and-swap: if the remote's current marker differs from
``expected_marker`` it raises ConflictError and writes nothing.
``expected_marker=None`` means the object must not exist yet.

Backends are plain classes that satisfy the Provider protocol; they are
selected at configuration time by ProviderKind, not by inheritance.
"""

from __future__ import annotations
import enum
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar, runtime_checkable

from ..errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteSnapshot:
    """Ciphertext as stored remotely plus the provider's opaque revision marker."""
    ciphertext: bytes
    marker: str

    def __repr__(self) -> str:
        return f"RemoteSnapshot({len(self.ciphertext)} bytes, marker={self.marker!r})"


@runtime_checkable
class Provider(Protocol):
    provider_id: str

    def fetch(self, timeout: Optional[float] = None) -> RemoteSnapshot:
        ...

    def push(self, ciphertext: bytes, expected_marker: Optional[str], timeout: Optional[float] = None) -> str:
        ...

    def ping(self, timeout: Optional[float] = None) -> None:
        ...


class ProviderKind(str, enum.Enum):
    FILESYSTEM = "filesystem"
    HOSTED = "hosted"
    MEMORY = "memory"


@dataclass(frozen=True)
class ProviderConfig:
    """Persistent configuration of one remote."""
    kind: ProviderKind
    name: str
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def provider_id(self) -> str:
        return f"{self.kind.value}:{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "name": self.name, "options": dict(self.options)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderConfig":
        try:
            kind = ProviderKind(data["kind"])
            name = data["name"]
            options = data.get("options") or {}
        except (KeyError, ValueError, TypeError) as exc:
            raise ConfigurationError(f"invalid provider configuration: {data!r}") from exc
        if not isinstance(name, str) or not name or not isinstance(options, dict):
            raise ConfigurationError(f"invalid provider configuration: {data!r}")
        return cls(kind=kind, name=name, options=options)

    def __repr__(self) -> str:
        # options may hold access tokens
        return f"ProviderConfig({self.provider_id}, options={sorted(self.options)})"


def call_with_timeout(func: Callable[[], T], timeout: Optional[float], what: str) -> T:
    """
    Run a blocking provider call, giving up after ``timeout`` seconds.

    The worker thread cannot be killed; it is abandoned and its result
    discarded. Callers treat a timeout like any other transport failure.
    """
    if timeout is None:
        return func()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strongbox-provider")
    try:
        future = executor.submit(func)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning("%s timed out after %.1fs", what, timeout)
            raise TransportError(f"{what} exceeded {timeout}s", timeout=True) from exc
    finally:
        executor.shutdown(wait=False)
