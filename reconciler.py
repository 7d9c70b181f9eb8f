"""
Install-state reconciliation.

After a job has changed the volume, the files on disk are the truth. The
reconciler rescans the directory that owns the job's file category and
rewrites the user's recorded ``installed`` flags to match it:

1. every known record is reset to not installed (in memory only);
2. each file found on disk flips its record back to installed;
3. files seen for the first time get a new record, installed when the
   job wrote the file and not installed when it deleted it;
4. the result is upserted, so records for files that are not part of the
   scan keep their other fields.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable

from archive_engine import is_supported_archive
from disk_scanner import DiskEntry, list_files
from job_config import JobConfig
from operation import WORLD_EXTENSIONS, OperationDescriptor, OpKind
from profile_store import (
    FileCategory,
    InstalledFileRecord,
    ProfileStore,
    remote_key_for,
)
from world_sync import pair_names, sibling_name

_log = logging.getLogger(__name__)


# ── Categories ────────────────────────────────────────────────────────


def is_backup_file(name: str, config: JobConfig) -> bool:
    return name.endswith(WORLD_EXTENSIONS) and config.backup_infix in name


def category_for(descriptor: OperationDescriptor, config: JobConfig) -> FileCategory:
    name = descriptor.final_destination_path.name
    if name.endswith(WORLD_EXTENSIONS):
        return FileCategory.BACKUP if is_backup_file(name, config) else FileCategory.WORLD
    if descriptor.final_destination_path.is_relative_to(config.config_dir):
        return FileCategory.CONFIG
    return FileCategory.MOD


def category_dir(category: FileCategory, config: JobConfig) -> Path:
    if category is FileCategory.MOD:
        return config.mods_dir
    if category is FileCategory.CONFIG:
        return config.config_dir
    return config.worlds_dir


def category_predicate(
    category: FileCategory, config: JobConfig, own_name: str | None = None
) -> Callable[[str], bool]:
    """Which file names in the category directory are tracked.

    Mods are identified by their archive name. Files an archive unpacked
    next to it are not mods of their own; a plain mod file is tracked only
    by the job that names it (``own_name``).
    """
    if category is FileCategory.MOD:
        return lambda name: is_supported_archive(name) or name == own_name
    if category is FileCategory.CONFIG:
        return lambda name: True
    if category is FileCategory.BACKUP:
        return lambda name: is_backup_file(name, config)
    return lambda name: name.endswith(WORLD_EXTENSIONS) and not is_backup_file(name, config)


# ── Merge ─────────────────────────────────────────────────────────────


def reconcile(
    category: FileCategory,
    known_records: Iterable[InstalledFileRecord],
    disk_entries: Iterable[DiskEntry],
    op: OpKind,
    remote_key: Callable[[str], str],
    targeted: tuple[str, ...] = (),
) -> list[InstalledFileRecord]:
    """Recompute ``installed`` for every record of ``category`` from disk.

    ``targeted`` names the files the job itself acted on. For world saves
    both halves of the pair take the status implied by ``op``, so a
    temporarily incomplete pair is still reported consistently.

    The input records are not modified; the records to upsert are returned.
    """
    records = {r.file_name: dataclasses.replace(r, installed=False) for r in known_records}

    for entry in disk_entries:
        record = records.get(entry.name)
        if record is not None:
            _log.info("found user file: %s which matches disk file", entry.name)
            record.installed = True
            record.size = entry.size
        else:
            _log.info("file %s on disk has no record, adding it", entry.name)
            records[entry.name] = InstalledFileRecord(
                file_name=entry.name,
                remote_key=remote_key(entry.name),
                installed=op.installs,
                size=entry.size,
            )

    if category is FileCategory.WORLD:
        for name in targeted:
            record = records.get(name)
            if record is not None:
                record.installed = op.installs
            elif op.installs:
                records[name] = InstalledFileRecord(
                    file_name=name, remote_key=remote_key(name), installed=True
                )

    return sorted(records.values(), key=lambda r: r.file_name)


# ── Reconciler ────────────────────────────────────────────────────────


class Reconciler:
    """Scans a job's category directory and writes the merged state to a
    ProfileStore."""

    def __init__(self, config: JobConfig, store: ProfileStore):
        self.config = config
        self.store = store

    def _predicate(self, descriptor: OperationDescriptor, category: FileCategory) -> Callable[[str], bool]:
        return category_predicate(category, self.config, descriptor.final_destination_path.name)

    def scan(self, descriptor: OperationDescriptor) -> tuple[FileCategory, list[DiskEntry]]:
        category = category_for(descriptor, self.config)
        directory = category_dir(category, self.config)
        entries = list_files(directory, self._predicate(descriptor, category))
        _log.info("current state of %s files in: %s", category.value, directory)
        for entry in entries:
            _log.info("file: %s, size: %d", entry.name, entry.size)
        return category, entries

    def apply(
        self,
        descriptor: OperationDescriptor,
        category: FileCategory,
        entries: list[DiskEntry],
    ) -> list[InstalledFileRecord]:
        """Merge ``entries`` into the stored records and upsert them.

        Backups are not persisted; disk presence is enough for them.
        Store failures surface as ``ReconcileError``.
        """
        if category is FileCategory.BACKUP:
            _log.info("%d backup file(s) on disk, nothing to persist", len(entries))
            return []

        discord_id = descriptor.discord_id
        # Copy jobs may land under a different name than the key's
        disk_name = descriptor.final_destination_path.name
        own_names = {disk_name: descriptor.source_key}
        sibling = sibling_name(disk_name)
        if sibling is not None:
            own_names[sibling] = descriptor.with_suffix(PurePosixPath(sibling).suffix).source_key

        def remote_key(name: str) -> str:
            return own_names.get(name) or remote_key_for(category, discord_id, name)

        # Records outside this job's scan are left as stored
        tracked = self._predicate(descriptor, category)
        known = [r for r in self.store.get_records(discord_id, category) if tracked(r.file_name)]
        records = reconcile(
            category,
            known,
            entries,
            descriptor.kind,
            remote_key,
            targeted=pair_names(disk_name),
        )
        self.store.upsert(discord_id, category, records)
        _log.info(
            "reconciled %d %s record(s), %d installed",
            len(records), category.value, sum(r.installed for r in records),
        )
        return records

    def run(self, descriptor: OperationDescriptor) -> list[InstalledFileRecord]:
        """Scan and apply in one step."""
        return self.apply(descriptor, *self.scan(descriptor))
