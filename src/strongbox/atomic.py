"""
atomic.py — Strongbox Atomic Write Engine

Commits a new snapshot so that a reader of the target path always sees
either the complete previous file or the complete new one.

Protocol:
  1. Write the new bytes to a temporary file on the target's volume
  2. Flush and fsync the temporary file
  3. os.replace() it over the target (the only step readers can observe)
  4. fsync the directory so the rename itself is durable

A crash before step 3 leaves an orphaned temporary file next to the target;
cleanup_orphans() removes those when the vault is next opened.
"""

from __future__ import annotations
import logging
import os
import secrets
from pathlib import Path
from typing import List, Optional, Union

from .errors import AtomicCommitError, ConfigurationError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def _temp_prefix(target: Path) -> str:
    return f".{target.name}."


def temp_path_for(target: Path, temp_dir: Optional[Path] = None) -> Path:
    directory = temp_dir if temp_dir is not None else target.parent
    return directory / f"{_temp_prefix(target)}{secrets.token_hex(8)}{TEMP_SUFFIX}"


def _check_same_volume(target: Path, temp_dir: Path) -> None:
    try:
        same = os.stat(temp_dir).st_dev == os.stat(target.parent).st_dev
    except OSError as exc:
        raise ConfigurationError(f"cannot stat commit directories: {exc}") from exc
    if not same:
        raise ConfigurationError(
            f"temporary directory {temp_dir} is not on the same volume as {target}; "
            "cross-volume atomic commit is unsupported"
        )


def _fsync_directory(directory: Path) -> None:
    # Not every platform lets a directory be opened for fsync (Windows).
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write(
    path: Union[str, Path],
    data: bytes,
    temp_dir: Optional[Union[str, Path]] = None,
) -> None:
    """
    Atomically replace ``path`` with ``data``.

    Args:
        path: Target file. Its parent directory must exist.
        data: Complete new contents.
        temp_dir: Where to stage the temporary file. Defaults to the target's
            directory and must be on the same volume.

    Raises:
        ConfigurationError: ``temp_dir`` is on another volume.
        AtomicCommitError: any write, sync or rename failure; the previous
            file is left untouched.
    """
    target = Path(path)
    staging = Path(temp_dir) if temp_dir is not None else None
    if staging is not None:
        _check_same_volume(target, staging)

    tmp = temp_path_for(target, staging)
    try:
        with open(tmp, "xb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except OSError as exc:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        except OSError as cleanup_exc:
            logger.warning("could not remove temporary file %s: %s", tmp, cleanup_exc)
        raise AtomicCommitError(f"{target}: {exc}") from exc

    _fsync_directory(target.parent)
    logger.debug("committed %d bytes to %s", len(data), target)


def find_orphans(path: Union[str, Path]) -> List[Path]:
    target = Path(path)
    if not target.parent.is_dir():
        return []
    prefix = _temp_prefix(target)
    return sorted(
        p for p in target.parent.iterdir()
        if p.name.startswith(prefix) and p.name.endswith(TEMP_SUFFIX)
    )


def cleanup_orphans(path: Union[str, Path]) -> int:
    """Best-effort removal of temporary files left by interrupted commits."""
    removed = 0
    for orphan in find_orphans(path):
        try:
            orphan.unlink()
            removed += 1
        except OSError as exc:
            logger.warning("could not remove orphaned temporary file %s: %s", orphan, exc)
    if removed:
        logger.info("removed %d orphaned temporary file(s) next to %s", removed, path)
    return removed
