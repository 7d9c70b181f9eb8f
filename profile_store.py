"""
ProfileStore: persistence of each user's installed files.

Two interchangeable backends share one interface:

- SqliteProfileStore: one row per (user, category, file name), written with
  an INSERT ... ON CONFLICT upsert.
- CognitoProfileStore: JSON-encoded custom attributes on the user's
  identity record, the form the web app reads its install badges from.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from errors import AuthError, ReconcileError
from identity import CognitoIdentity, CognitoUser

_log = logging.getLogger(__name__)


class FileCategory(str, Enum):
    MOD = "mod"
    WORLD = "world"
    BACKUP = "backup"
    CONFIG = "config"


KEY_NAMESPACES = {
    FileCategory.MOD: "mods",
    FileCategory.CONFIG: "config",
    FileCategory.WORLD: "valheim-backups-auto",
    FileCategory.BACKUP: "valheim-backups-auto",
}


def remote_key_for(category: FileCategory, discord_id: str, file_name: str) -> str:
    return f"{KEY_NAMESPACES[category]}/{discord_id}/{file_name}"


@dataclass
class InstalledFileRecord:
    """One tracked file. ``file_name`` is unique per user and category."""

    file_name: str
    remote_key: str
    installed: bool = False
    size: int | None = None


class ProfileStore(ABC):
    """Abstract interface for installed-file persistence.

    Implementations: SqliteProfileStore (relational), CognitoProfileStore
    (identity attributes).
    """

    @abstractmethod
    def get_records(self, discord_id: str, category: FileCategory) -> list[InstalledFileRecord]:
        """Every record the user has in ``category``."""

    @abstractmethod
    def upsert(self, discord_id: str, category: FileCategory, records: list[InstalledFileRecord]) -> None:
        """Insert new records and update ``installed``/``size`` of existing
        ones, matched on ``file_name``. Records not passed are untouched."""

    def close(self) -> None:
        """Release resources (DB connections, etc.)."""


# ── SQLite ────────────────────────────────────────────────────────────


class SqliteProfileStore(ProfileStore):
    def __init__(self, db_path: str | Path):
        self.db_path = db_path
        self._conn = self._init_db()

    def _init_db(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS installed_files (
                    discord_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    file_name TEXT NOT NULL,
                    remote_key TEXT NOT NULL,
                    installed INTEGER NOT NULL DEFAULT 0,
                    size INTEGER,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (discord_id, category, file_name)
                )
            """)
            conn.commit()
        except sqlite3.Error as exc:
            raise ReconcileError(f"failed to open profile database {self.db_path}: {exc}") from exc
        return conn

    def get_records(self, discord_id: str, category: FileCategory) -> list[InstalledFileRecord]:
        try:
            rows = self._conn.execute(
                """
                SELECT file_name, remote_key, installed, size
                FROM installed_files
                WHERE discord_id = ? AND category = ?
                ORDER BY file_name
                """,
                (discord_id, category.value),
            ).fetchall()
        except sqlite3.Error as exc:
            raise ReconcileError(f"failed to read {category.value} files: {exc}") from exc
        return [
            InstalledFileRecord(file_name=r[0], remote_key=r[1], installed=bool(r[2]), size=r[3])
            for r in rows
        ]

    def upsert(self, discord_id: str, category: FileCategory, records: list[InstalledFileRecord]) -> None:
        rows = [
            (discord_id, category.value, r.file_name, r.remote_key, int(r.installed), r.size)
            for r in records
        ]
        try:
            with self._conn:
                self._conn.executemany(
                    """
                    INSERT INTO installed_files
                        (discord_id, category, file_name, remote_key, installed, size)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT (discord_id, category, file_name) DO UPDATE SET
                        installed = excluded.installed,
                        size = COALESCE(excluded.size, installed_files.size),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise ReconcileError(f"failed to upsert {category.value} files: {exc}") from exc
        _log.info("upserted %d %s record(s) for %s", len(rows), category.value, discord_id)

    def close(self) -> None:
        self._conn.close()


# ── Cognito ───────────────────────────────────────────────────────────

# Mods and config are stored as [{"name": ..., "installed": ...}],
# world saves as {"<name>": <installed>}.
LIST_ATTRIBUTES = {
    FileCategory.MOD: "custom:installed_mods",
    FileCategory.CONFIG: "custom:installed_config",
}
MAP_ATTRIBUTES = {
    FileCategory.WORLD: "custom:installed_backups",
}


class CognitoProfileStore(ProfileStore):
    """Stores install state on the authenticated user's Cognito attributes.

    Cognito has no conditional attribute update, so ``upsert`` is a
    read-merge-write of the whole attribute.
    """

    def __init__(self, identity: CognitoIdentity, user: CognitoUser):
        self.identity = identity
        self.user = user

    @staticmethod
    def _attribute_name(category: FileCategory) -> str:
        name = LIST_ATTRIBUTES.get(category) or MAP_ATTRIBUTES.get(category)
        if name is None:
            raise ReconcileError(f"{category.value} files are not stored on the user profile")
        return name

    def _load(self, category: FileCategory) -> dict[str, bool]:
        attribute = self._attribute_name(category)
        try:
            attributes = self.identity.get_user_attributes(self.user.credentials.access_token)
        except AuthError as exc:
            raise ReconcileError(str(exc)) from exc

        raw = attributes.get(attribute)
        if not raw:
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ReconcileError(f"failed to decode {attribute}: {exc}") from exc

        if value is None:
            return {}
        if category in MAP_ATTRIBUTES:
            if not isinstance(value, dict):
                raise ReconcileError(f"{attribute} is not a JSON object")
            return {str(name): bool(installed) for name, installed in value.items()}

        if not isinstance(value, list):
            raise ReconcileError(f"{attribute} is not a JSON list")
        state = {}
        for item in value:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                raise ReconcileError(f"{attribute} has an entry without a name: {item!r}")
            state[item["name"]] = bool(item.get("installed", False))
        return state

    def get_records(self, discord_id: str, category: FileCategory) -> list[InstalledFileRecord]:
        state = self._load(category)
        return [
            InstalledFileRecord(
                file_name=name,
                remote_key=remote_key_for(category, discord_id, name),
                installed=installed,
            )
            for name, installed in state.items()
        ]

    def upsert(self, discord_id: str, category: FileCategory, records: list[InstalledFileRecord]) -> None:
        attribute = self._attribute_name(category)
        state = self._load(category)
        _log.info("%s before: %s", attribute, state)
        for record in records:
            state[record.file_name] = record.installed
        _log.info("%s after: %s", attribute, state)

        if category in MAP_ATTRIBUTES:
            encoded = json.dumps(state)
        else:
            encoded = json.dumps([{"name": n, "installed": i} for n, i in state.items()])

        try:
            self.identity.update_user_attributes(
                self.user.credentials.access_token, {attribute: encoded}
            )
        except AuthError as exc:
            raise ReconcileError(f"failed to update {attribute}: {exc}") from exc
