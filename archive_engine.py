"""
Archive expansion and removal.

A mod archive doubles as its own uninstall manifest: ``expand`` writes every
entry under the destination directory and leaves the archive in place, and
``purge`` later reads the same archive listing to delete exactly those files
before deleting the archive itself. The archive file name is what the
profile store and the web UI use to decide whether a mod is installed, so
it must survive an install.

Zip is the common case; .7z and .rar payloads are handled the same way.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import warnings
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import py7zr
import rarfile

from errors import ArchiveError, PartialPurgeWarning

_log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}


@dataclass(frozen=True)
class ArchiveEntry:
    name: str  # "/"-separated path inside the archive
    is_dir: bool


@dataclass(frozen=True)
class ArchiveHandle:
    """An archive on disk and the directory its contents belong to."""

    payload_path: Path
    destination_dir: Path


@dataclass
class PurgeResult:
    removed: list[Path] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)  # already gone, not an error
    failed: list[Path] = field(default_factory=list)  # logged, pass continued


def is_supported_archive(name: str) -> bool:
    return PurePosixPath(name).suffix.lower() in SUPPORTED_EXTENSIONS


# ── Low-level archive reading ─────────────────────────────────────────


def _open_archive(filepath: Path):
    """Open a zip or rar archive; both expose ``infolist()`` and ``open()``."""
    ext = filepath.suffix.lower()
    try:
        if ext == ".zip":
            return zipfile.ZipFile(filepath, "r")
        if ext == ".rar":
            return rarfile.RarFile(filepath, "r")
    except (OSError, zipfile.BadZipFile, rarfile.Error) as exc:
        raise ArchiveError(f"failed to open archive {filepath}: {exc}") from exc
    raise ArchiveError(f"Unsupported archive format: {ext}")


def list_entries(filepath: Path) -> list[ArchiveEntry]:
    ext = filepath.suffix.lower()
    if ext == ".7z":
        try:
            with py7zr.SevenZipFile(filepath, "r") as sz:
                infos = [(i.filename, i.is_directory) for i in sz.list()]
        except (OSError, py7zr.exceptions.Bad7zFile) as exc:
            raise ArchiveError(f"failed to open archive {filepath}: {exc}") from exc
    else:
        with _open_archive(filepath) as archive:
            infos = [(i.filename, i.is_dir()) for i in archive.infolist()]

    entries = []
    for name, is_dir in infos:
        name = name.replace("\\", "/")
        entries.append(ArchiveEntry(name=name, is_dir=is_dir or name.endswith("/")))
    return entries


def _target_path(destination: Path, entry_name: str) -> Path:
    rel = PurePosixPath(entry_name)
    if rel.is_absolute() or ".." in rel.parts:
        raise ArchiveError(f"archive entry escapes destination: {entry_name!r}")
    return destination.joinpath(*rel.parts)


def _resolve_targets(handle: ArchiveHandle) -> list[tuple[ArchiveEntry, Path]]:
    # Every name is checked before the first write or delete
    entries = list_entries(handle.payload_path)
    return [(e, _target_path(handle.destination_dir, e.name)) for e in entries]


# ── Expand ────────────────────────────────────────────────────────────


def expand(handle: ArchiveHandle) -> list[Path]:
    """Unpack every entry of the archive into ``handle.destination_dir``.

    Existing files are overwritten, so running this twice gives the same
    result as running it once. A failure part-way leaves the entries already
    written in place. The archive itself is not removed.
    """
    targets = _resolve_targets(handle)
    written: list[Path] = []

    if handle.payload_path.suffix.lower() == ".7z":
        with tempfile.TemporaryDirectory() as tmpdir:
            tmppath = Path(tmpdir)
            try:
                with py7zr.SevenZipFile(handle.payload_path, "r") as sz:
                    sz.extractall(path=tmppath)
            except py7zr.exceptions.Bad7zFile as exc:
                raise ArchiveError(f"failed to extract {handle.payload_path}: {exc}") from exc
            for entry, target in targets:
                if entry.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(_target_path(tmppath, entry.name), target)
                written.append(target)
    else:
        with _open_archive(handle.payload_path) as archive:
            for info, (entry, target) in zip(archive.infolist(), targets):
                if entry.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                try:
                    with archive.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                except (zipfile.BadZipFile, rarfile.Error) as exc:
                    raise ArchiveError(f"failed to read {entry.name}: {exc}") from exc
                written.append(target)

    _log.info(
        "expanded %d file(s) from %s into %s",
        len(written), handle.payload_path.name, handle.destination_dir,
    )
    return written


# ── Purge ─────────────────────────────────────────────────────────────


def purge(handle: ArchiveHandle) -> PurgeResult:
    """Delete every file the archive lists from ``handle.destination_dir``,
    then delete the archive.

    Directories are never removed. Files that are already gone are reported
    with a ``PartialPurgeWarning``; other per-file failures are logged and
    the pass continues. Failing to delete the archive raises ``ArchiveError``.
    """
    result = PurgeResult()

    for entry, target in _resolve_targets(handle):
        if entry.is_dir:
            continue
        _log.info("removing file %s", target)
        try:
            target.unlink()
        except FileNotFoundError:
            _log.info("file %s does not exist, skipping...", target)
            warnings.warn(f"{target} already removed", PartialPurgeWarning, stacklevel=2)
            result.missing.append(target)
        except OSError as exc:
            _log.error("failed to remove file %s: %s", target, exc)
            result.failed.append(target)
        else:
            result.removed.append(target)

    try:
        handle.payload_path.unlink()
    except OSError as exc:
        raise ArchiveError(f"failed to remove archive {handle.payload_path}: {exc}") from exc

    _log.info(
        "purged %s: %d removed, %d missing, %d failed",
        handle.payload_path.name, len(result.removed), len(result.missing), len(result.failed),
    )
    return result
