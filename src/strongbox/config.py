"""
config.py — Strongbox configuration and data paths

Layout of the data directory (``STRONGBOX_HOME``, else ``~/.strongbox``,
``%APPDATA%/strongbox`` on Windows):

    config.json            StrongboxConfig
    vaults/<name>.sbx      vault files
    vaults/<name>.sbx.sync.json   SyncState for that vault

The configuration holds no secrets other than provider access tokens in
provider options; the file is written with owner-only permissions.
"""

from __future__ import annotations
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .atomic import atomic_write
from .crypto import KdfParams
from .errors import ConfigurationError
from .merge import TieBreak
from .providers import Provider, ProviderConfig, load_provider
from .validate import validate_vault_name

logger = logging.getLogger(__name__)

ENV_HOME = "STRONGBOX_HOME"
CONFIG_FILE = "config.json"
VAULT_SUFFIX = ".sbx"
DEFAULT_SYNC_TIMEOUT = 30.0


def data_dir() -> Path:
    override = os.environ.get(ENV_HOME)
    if override:
        return Path(override)
    if sys.platform == "win32" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"]) / "strongbox"
    return Path.home() / ".strongbox"


def config_path(base: Optional[Path] = None) -> Path:
    return (base or data_dir()) / CONFIG_FILE


def vault_path(name: str, base: Optional[Path] = None) -> Path:
    validate_vault_name(name)
    return (base or data_dir()) / "vaults" / f"{name}{VAULT_SUFFIX}"


@dataclass
class StrongboxConfig:
    default_vault: Optional[str] = None
    kdf: KdfParams = field(default_factory=KdfParams)
    tie_break: TieBreak = TieBreak.DETERMINISTIC
    sync_timeout: float = DEFAULT_SYNC_TIMEOUT
    providers: List[ProviderConfig] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_vault": self.default_vault,
            "kdf": self.kdf.to_dict(),
            "tie_break": self.tie_break.value,
            "sync_timeout": self.sync_timeout,
            "providers": [p.to_dict() for p in self.providers],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StrongboxConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("configuration must be a JSON object")
        default_vault = data.get("default_vault")
        if default_vault is not None:
            validate_vault_name(default_vault)
        try:
            tie_break = TieBreak(data.get("tie_break", TieBreak.DETERMINISTIC.value))
            sync_timeout = float(data.get("sync_timeout", DEFAULT_SYNC_TIMEOUT))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid configuration value: {exc}") from exc
        if sync_timeout <= 0:
            raise ConfigurationError("sync_timeout must be positive")
        kdf = KdfParams.from_dict(data["kdf"]) if "kdf" in data else KdfParams()
        providers = [ProviderConfig.from_dict(p) for p in data.get("providers", [])]
        names = [p.provider_id for p in providers]
        if len(set(names)) != len(names):
            raise ConfigurationError("provider names must be unique per kind")
        return cls(
            default_vault=default_vault,
            kdf=kdf,
            tie_break=tie_break,
            sync_timeout=sync_timeout,
            providers=providers,
        )

    def provider(self, provider_id: str) -> ProviderConfig:
        for p in self.providers:
            if p.provider_id == provider_id:
                return p
        raise ConfigurationError(f"no provider {provider_id!r} configured")

    def load_providers(self, object_name: str) -> List[Provider]:
        return [load_provider(p, object_name) for p in self.providers]


def load_config(path: Optional[Path] = None) -> StrongboxConfig:
    """Read the configuration; a missing file yields the defaults."""
    target = path or config_path()
    if not target.exists():
        logger.debug("no configuration at %s, using defaults", target)
        return StrongboxConfig()
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"{target}: {exc}") from exc
    return StrongboxConfig.from_dict(data)


def save_config(config: StrongboxConfig, path: Optional[Path] = None) -> Path:
    target = path or config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(config.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    atomic_write(target, text.encode("utf-8"))
    try:
        os.chmod(target, 0o600)
    except OSError as exc:
        logger.warning("could not restrict permissions on %s: %s", target, exc)
    return target
