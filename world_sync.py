"""
Paired world-save handling.

A Valheim world is two files with the same base name: ``<world>.db`` holds
the terrain and objects, ``<world>.fwl`` holds metadata. Whatever happens to
one half (download or removal) happens to the other.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from object_store import ObjectStore
from operation import WORLD_EXTENSIONS, OperationDescriptor

_log = logging.getLogger(__name__)

_SIBLING = {".db": ".fwl", ".fwl": ".db"}


def sibling_name(file_name: str) -> str | None:
    """``world1.db`` -> ``world1.fwl`` and back; None for other files."""
    path = PurePosixPath(file_name)
    other = _SIBLING.get(path.suffix)
    if other is None:
        return None
    return path.with_suffix(other).name


def pair_names(file_name: str) -> tuple[str, ...]:
    sibling = sibling_name(file_name)
    return (file_name,) if sibling is None else (file_name, sibling)


def paired_descriptor(descriptor: OperationDescriptor) -> OperationDescriptor | None:
    """Descriptor for the other half of a world save, or None if the
    descriptor does not target a world file."""
    if not descriptor.is_world_file:
        return None
    suffix = PurePosixPath(descriptor.resolved_file_name).suffix
    return descriptor.with_suffix(_SIBLING[suffix])


def sync_pair(descriptor: OperationDescriptor, store: ObjectStore) -> bool:
    """Download the other half of a world save next to the primary file.

    Non-world files are skipped and count as success. A failed download is
    logged and reported as False; the primary operation still goes ahead
    and the pair is completed on the next sync.
    """
    pair = paired_descriptor(descriptor)
    if pair is None:
        _log.info("file: %s is not a world file. skipping sync", descriptor.source_key)
        return True

    _log.info(
        "file is a *%s, syncing paired %s",
        PurePosixPath(descriptor.resolved_file_name).suffix,
        pair.resolved_file_name,
    )
    try:
        store.download(pair.source_key, pair.final_destination_path)
    except Exception as exc:
        _log.error("failed to sync world file %s: %s", pair.source_key, exc)
        return False

    _log.info("synced world file: %s to: %s", pair.source_key, pair.final_destination_path)
    return True


def remove_pair(descriptor: OperationDescriptor) -> list[str]:
    """Delete a world file and its sibling from disk.

    Halves that are already missing are skipped. Returns the names that
    were actually removed.
    """
    primary = descriptor.final_destination_path
    assert primary.name.endswith(WORLD_EXTENSIONS), "remove_pair called on non-world file"

    removed = []
    for name in pair_names(primary.name):
        path = primary.with_name(name)
        try:
            path.unlink()
        except FileNotFoundError:
            _log.info("world file %s already removed", path)
            continue
        _log.info("removed world file %s", path)
        removed.append(name)
    return removed
