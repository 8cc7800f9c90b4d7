"""
Sync providers.

One contract (``Provider``), several backends chosen by ``ProviderKind`` at
configuration time through ``load_provider``.
"""

from __future__ import annotations
from typing import Callable, Dict

from ..errors import ConfigurationError
from .base import (
    Provider,
    ProviderConfig,
    ProviderKind,
    RemoteSnapshot,
    call_with_timeout,
)
from .filesystem import FilesystemProvider, init_repository
from .hosted import HostedRepositoryProvider
from .memory import MemoryProvider, MemoryStore

__all__ = [
    "Provider",
    "ProviderConfig",
    "ProviderKind",
    "RemoteSnapshot",
    "call_with_timeout",
    "FilesystemProvider",
    "HostedRepositoryProvider",
    "MemoryProvider",
    "MemoryStore",
    "init_repository",
    "load_provider",
]


def _require(config: ProviderConfig, *names: str) -> Dict[str, str]:
    missing = [n for n in names if not config.options.get(n)]
    if missing:
        raise ConfigurationError(f"{config.provider_id}: missing option(s) {', '.join(missing)}")
    return {n: config.options[n] for n in names}


def _load_filesystem(config: ProviderConfig, object_name: str) -> Provider:
    opts = _require(config, "path")
    return FilesystemProvider(opts["path"], object_name, name=config.name)


def _load_hosted(config: ProviderConfig, object_name: str) -> Provider:
    opts = _require(config, "owner", "repo", "token")
    return HostedRepositoryProvider(
        owner=opts["owner"],
        repo=opts["repo"],
        token=opts["token"],
        object_name=config.options.get("path_prefix", "") + object_name,
        name=config.name,
        api_url=config.options.get("api_url", "https://api.github.com"),
        branch=config.options.get("branch"),
    )


def _load_memory(config: ProviderConfig, object_name: str) -> Provider:
    # A fresh store per load: nothing outlives the provider instance.
    return MemoryProvider(object_name, MemoryStore(), name=config.name)


_FACTORIES: Dict[ProviderKind, Callable[[ProviderConfig, str], Provider]] = {
    ProviderKind.FILESYSTEM: _load_filesystem,
    ProviderKind.HOSTED: _load_hosted,
    ProviderKind.MEMORY: _load_memory,
}


def load_provider(config: ProviderConfig, object_name: str) -> Provider:
    """Instantiate the backend for ``config``, storing the vault as ``object_name``."""
    factory = _FACTORIES.get(config.kind)
    if factory is None:
        raise ConfigurationError(f"no provider registered for kind {config.kind!r}")
    return factory(config, object_name)
