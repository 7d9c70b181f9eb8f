"""
FileJob: one install, copy or uninstall of a single object on the server
volume, from download to profile bookkeeping.

Stages run strictly in order:

    created -> pair_synced -> mutated -> scanned -> reconciled -> done

For a plain write or copy the download itself is the write, so the
destination file already changes before ``pair_synced``; ``mutated`` then
only records it. Archives change the volume in ``mutated`` alone.

Anything that fails up to and including ``mutated`` raises and the profile
store is never told about an operation that did not happen. Failures while
scanning or reconciling are logged and recorded on the result; the files
already written or removed stay as they are, and the next job's rescan
brings the bookkeeping back in line.

The game server is paused (scaled to 0) for the whole job and resumed
afterwards, including after a failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from archive_engine import ArchiveHandle, PurgeResult, expand, purge
from disk_scanner import require_dirs
from errors import DirectoryError, ReconcileError, ScaleError
from job_config import JobConfig
from object_store import ObjectStore
from operation import OperationDescriptor, OpKind
from profile_store import FileCategory, InstalledFileRecord
from reconciler import Reconciler
from scaler import HearthHubClient
from world_sync import remove_pair, sync_pair

_log = logging.getLogger(__name__)


class JobState(str, Enum):
    CREATED = "created"
    PAIR_SYNCED = "pair_synced"
    MUTATED = "mutated"
    SCANNED = "scanned"
    RECONCILED = "reconciled"
    DONE = "done"


_ORDER = list(JobState)


@dataclass
class JobResult:
    state: JobState = JobState.CREATED
    category: FileCategory | None = None
    pair_synced: bool = True
    written: list[Path] = field(default_factory=list)
    purge: PurgeResult | None = None
    records: list[InstalledFileRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)  # non-fatal, post-mutation

    @property
    def ok(self) -> bool:
        return self.state is JobState.DONE


class FileJob:
    def __init__(
        self,
        descriptor: OperationDescriptor,
        config: JobConfig,
        object_store: ObjectStore,
        reconciler: Reconciler,
        scaler: Optional[HearthHubClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.descriptor = descriptor
        self.config = config
        self.object_store = object_store
        self.reconciler = reconciler
        self.scaler = scaler
        self._sleep = sleep
        self.result = JobResult()

    @property
    def state(self) -> JobState:
        return self.result.state

    def _advance(self, state: JobState):
        if _ORDER.index(state) <= _ORDER.index(self.result.state):
            raise RuntimeError(f"cannot move from {self.result.state.value} to {state.value}")
        _log.debug("job state: %s -> %s", self.result.state.value, state.value)
        self.result.state = state

    # ── Server pause / resume ─────────────────────────────────────────

    def _pause_server(self):
        if self.scaler is None:
            return
        d = self.descriptor
        self.scaler.scale_deployment(d.discord_id, d.refresh_token, 0)
        if self.config.scale_down_grace_seconds:
            _log.info(
                "sleeping for %s seconds to allow server to terminate",
                self.config.scale_down_grace_seconds,
            )
            self._sleep(self.config.scale_down_grace_seconds)

    def _resume_server(self) -> bool:
        if self.scaler is None:
            return True
        d = self.descriptor
        try:
            self.scaler.scale_deployment(d.discord_id, d.refresh_token, 1)
        except ScaleError as exc:
            _log.error("failed to scale deployment back to 1: %s", exc)
            return False
        _log.info("valheim server deployment scaled to 1")
        return True

    # ── Stages ────────────────────────────────────────────────────────

    def _fetch(self):
        d = self.descriptor
        # Deleting a plain file needs nothing from storage; deleting an
        # archive needs the archive itself as the list of files to remove.
        if d.kind is OpKind.DELETE and not d.is_archive:
            return
        # Plain files land at their final path here; archives land next to
        # the files they will be expanded into
        size = self.object_store.download(d.source_key, d.final_destination_path)
        _log.info("file: %s downloaded (%d bytes) for user: %s", d.source_key, size, d.discord_id)

        if d.kind.installs:
            self.result.pair_synced = sync_pair(d, self.object_store)
            if not self.result.pair_synced:
                _log.warning("world pair for %s is incomplete until the next sync", d.resolved_file_name)

    def _mutate(self):
        d = self.descriptor
        handle = None
        if d.is_archive:
            handle = ArchiveHandle(
                payload_path=d.final_destination_path,
                destination_dir=Path(d.destination_path),
            )

        if d.kind.installs:
            if handle is not None:
                self.result.written = expand(handle)
                _log.info("file unzipped to: %s", handle.destination_dir)
            else:
                self.result.written = [d.final_destination_path]
                _log.info("skipping unpack for %s", d.final_destination_path)
            return

        _log.info("job is a delete operation: is archive: %s", d.is_archive)
        if handle is not None:
            self.result.purge = purge(handle)
        elif d.is_world_file:
            remove_pair(d)
        else:
            try:
                d.final_destination_path.unlink()
            except FileNotFoundError:
                _log.info("file %s does not exist, nothing to delete", d.final_destination_path)

    def _reconcile(self):
        try:
            category, entries = self.reconciler.scan(self.descriptor)
        except DirectoryError as exc:
            _log.error("scan failed, profile not updated: %s", exc)
            self.result.errors.append(str(exc))
            return
        self.result.category = category
        self._advance(JobState.SCANNED)

        try:
            self.result.records = self.reconciler.apply(self.descriptor, category, entries)
        except ReconcileError as exc:
            _log.error("failed to update installed %s files: %s", category.value, exc)
            self.result.errors.append(str(exc))
            return
        self._advance(JobState.RECONCILED)
        self._advance(JobState.DONE)

    def _execute(self) -> JobResult:
        require_dirs(self.config.mounted_dirs)
        _log.info("required directories exist on the volume")

        self._fetch()
        self._advance(JobState.PAIR_SYNCED)

        self._mutate()
        self._advance(JobState.MUTATED)

        self._reconcile()
        return self.result

    def run(self) -> JobResult:
        """Run every stage. Raises on any failure up to the mutation and,
        after an otherwise finished job, if the server cannot be resumed."""
        self._pause_server()
        try:
            result = self._execute()
        finally:
            resumed = self._resume_server()
        if not resumed:
            raise ScaleError("server deployment was not scaled back to 1")
        return result
