"""
Shared fixtures and helpers for the file install test suite.
"""

import zipfile
from pathlib import Path

import pytest

from errors import AuthError, NotFoundError, ScaleError
from identity import CognitoCredentials, CognitoUser
from job_config import JobConfig
from object_store import ObjectStore
from operation import OperationDescriptor
from profile_store import CognitoProfileStore, SqliteProfileStore


def make_zip(path: Path, members: dict) -> Path:
    """Write a zip at ``path`` from {archive_name: content}; names ending in
    "/" become directory entries."""
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


def snapshot(directory: Path) -> dict[str, bytes]:
    """Relative path -> content for every file under ``directory``."""
    return {
        f.relative_to(directory).as_posix(): f.read_bytes()
        for f in sorted(directory.rglob("*"))
        if f.is_file()
    }


def make_descriptor(**overrides) -> OperationDescriptor:
    values = {
        "discord_id": "1234",
        "refresh_token": "token",
        "source_key": "mods/1234/ValheimPlus.zip",
        "destination_path": "/valheim/BepInEx/plugins/",
        "kind": "write",
        "is_archive": True,
    }
    values.update(overrides)
    return OperationDescriptor(**values)


class FakeObjectStore(ObjectStore):
    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.fetched: list[str] = []

    def fetch(self, key: str) -> bytes:
        self.fetched.append(key)
        if key not in self.objects:
            raise NotFoundError(key, "test-bucket")
        return self.objects[key]


class FakeScaler:
    def __init__(self, fail_on: tuple[int, ...] = ()):
        self.calls: list[tuple[str, str, int]] = []
        self.fail_on = fail_on
        self.closed = False

    def scale_deployment(self, discord_id: str, refresh_token: str, replicas: int) -> None:
        self.calls.append((discord_id, refresh_token, replicas))
        if replicas in self.fail_on:
            raise ScaleError(f"failed to scale replica to: {replicas}")

    def close(self) -> None:
        self.closed = True


class FakeIdentity:
    """Stands in for CognitoIdentity; attributes live in a plain dict."""

    def __init__(self, attributes: dict[str, str] | None = None, fail: bool = False):
        self.attributes = dict(attributes or {})
        self.fail = fail
        self.updates: list[tuple[str, dict[str, str]]] = []

    def get_user_attributes(self, access_token: str) -> dict[str, str]:
        if self.fail:
            raise AuthError("could not get user with access token")
        return dict(self.attributes)

    def update_user_attributes(self, access_token: str, attributes: dict[str, str]) -> None:
        self.updates.append((access_token, attributes))
        self.attributes.update(attributes)


def cognito_store(identity: FakeIdentity) -> CognitoProfileStore:
    user = CognitoUser(discord_id="1234", credentials=CognitoCredentials("refresh", access_token="access"))
    return CognitoProfileStore(identity, user)


@pytest.fixture
def config(tmp_path) -> JobConfig:
    """A JobConfig whose mounted directories are fresh tmp_path subdirectories."""
    mods = tmp_path / "valheim" / "BepInEx" / "plugins"
    cfg = tmp_path / "valheim" / "BepInEx" / "config"
    worlds = tmp_path / "worlds_local"
    for d in (mods, cfg, worlds):
        d.mkdir(parents=True)
    return JobConfig(
        mods_dir=mods,
        config_dir=cfg,
        worlds_dir=worlds,
        profile_db_path=tmp_path / "profile.db",
        scale_down_grace_seconds=0,
    )


@pytest.fixture
def store(config):
    s = SqliteProfileStore(config.profile_db_path)
    yield s
    s.close()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def scaler():
    return FakeScaler()
