"""
Directory listing for reconciliation and mount checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from errors import DirectoryError

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiskEntry:
    name: str
    size: int


def list_files(directory: str | Path, predicate: Callable[[str], bool]) -> list[DiskEntry]:
    """Return the regular files in ``directory`` whose name passes
    ``predicate``, sorted by name. Subdirectories are never included.

    Raises ``DirectoryError`` if the directory cannot be opened or read.
    """
    directory = Path(directory)
    try:
        children = list(directory.iterdir())
    except OSError as exc:
        raise DirectoryError(f"failed to read directory {directory}: {exc}") from exc

    entries = []
    for child in children:
        try:
            if child.is_dir() or not predicate(child.name):
                continue
            entries.append(DiskEntry(name=child.name, size=child.stat().st_size))
        except FileNotFoundError:
            # Removed between listing and stat
            continue
    return sorted(entries, key=lambda e: e.name)


def dir_exists(directory: str | Path) -> bool:
    directory = Path(directory)
    try:
        if not directory.is_dir():
            if directory.exists():
                _log.error("%s is not a directory", directory)
            else:
                _log.error("%s directory does not exist. is the volume mounted?", directory)
            return False
    except OSError as exc:
        _log.error("failed to stat %s: %s", directory, exc)
        return False
    return True


def require_dirs(directories: Iterable[str | Path]):
    missing = [str(d) for d in directories if not dir_exists(d)]
    if missing:
        raise DirectoryError(f"required directories unavailable: {', '.join(missing)}")
