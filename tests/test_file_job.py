"""
End-to-end tests for FileJob against temp directories, an in-memory bucket
and a local SQLite or fake Cognito profile store.
"""

import io
import json
import zipfile

import pytest

from errors import ArchiveError, DirectoryError, NotFoundError, ReconcileError, ScaleError
from file_job import FileJob, JobState
from profile_store import FileCategory, InstalledFileRecord
from reconciler import Reconciler
from tests.conftest import FakeIdentity, FakeScaler, cognito_store, make_descriptor, snapshot


def zip_bytes(members: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return buf.getvalue()


MOD_ZIP = zip_bytes({"ValheimPlus/": "", "ValheimPlus/ValheimPlus.dll": "dll", "ValheimPlus/README.md": "readme"})


def make_job(descriptor, config, object_store, store, scaler=None, sleep=None):
    return FileJob(
        descriptor,
        config,
        object_store,
        Reconciler(config, store),
        scaler=scaler,
        sleep=sleep or (lambda seconds: None),
    )


def installed(store, category):
    return {r.file_name: r.installed for r in store.get_records("1234", category)}


def mod_descriptor(config, kind="write"):
    return make_descriptor(destination_path=str(config.mods_dir), kind=kind)


def world_descriptor(config, name="world1.db", kind="write"):
    return make_descriptor(
        source_key=f"valheim-backups-auto/1234/{name}",
        destination_path=str(config.worlds_dir),
        kind=kind,
        is_archive=False,
    )


# ── Archives ─────────────────────────────────────────────────────────────────

def test_install_archive(config, object_store, store, scaler):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP

    result = make_job(mod_descriptor(config), config, object_store, store, scaler).run()

    assert result.ok
    assert result.category is FileCategory.MOD
    assert snapshot(config.mods_dir) == {
        "ValheimPlus.zip": MOD_ZIP,
        "ValheimPlus/ValheimPlus.dll": b"dll",
        "ValheimPlus/README.md": b"readme",
    }
    assert installed(store, FileCategory.MOD) == {"ValheimPlus.zip": True}
    assert [c[2] for c in scaler.calls] == [0, 1]


def test_uninstall_archive_restores_previous_state(config, object_store, store, scaler):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP
    (config.mods_dir / "Other.dll").write_bytes(b"other")
    before = snapshot(config.mods_dir)

    make_job(mod_descriptor(config), config, object_store, store, scaler).run()
    result = make_job(mod_descriptor(config, kind="delete"), config, object_store, store, scaler).run()

    assert result.ok
    assert snapshot(config.mods_dir) == before
    assert sorted(p.relative_to(config.mods_dir).as_posix() for p in result.purge.removed) == [
        "ValheimPlus/README.md",
        "ValheimPlus/ValheimPlus.dll",
    ]
    assert installed(store, FileCategory.MOD) == {"ValheimPlus.zip": False}


def test_corrupt_archive_aborts_before_bookkeeping(config, object_store, store):
    object_store.objects["mods/1234/ValheimPlus.zip"] = b"not a zip"
    job = make_job(mod_descriptor(config), config, object_store, store)

    with pytest.raises(ArchiveError):
        job.run()

    assert job.state is JobState.PAIR_SYNCED
    assert store.get_records("1234", FileCategory.MOD) == []


# ── Plain files and worlds ───────────────────────────────────────────────────

def test_install_world_fetches_pair(config, object_store, store):
    object_store.objects.update(
        {"valheim-backups-auto/1234/world1.db": b"db", "valheim-backups-auto/1234/world1.fwl": b"fwl"}
    )

    result = make_job(world_descriptor(config), config, object_store, store).run()

    assert result.ok and result.pair_synced
    assert snapshot(config.worlds_dir) == {"world1.db": b"db", "world1.fwl": b"fwl"}
    assert installed(store, FileCategory.WORLD) == {"world1.db": True, "world1.fwl": True}


def test_install_world_with_missing_sibling_still_succeeds(config, object_store, store):
    object_store.objects["valheim-backups-auto/1234/world1.db"] = b"db"

    result = make_job(world_descriptor(config), config, object_store, store).run()

    assert result.ok
    assert result.pair_synced is False
    assert installed(store, FileCategory.WORLD) == {"world1.db": True, "world1.fwl": True}


def test_delete_world_removes_pair_without_download(config, object_store, store):
    for name in ("world1.db", "world1.fwl", "world2.db", "world2.fwl"):
        (config.worlds_dir / name).write_bytes(name.encode())
    store.upsert(
        "1234",
        FileCategory.WORLD,
        [
            InstalledFileRecord(n, f"valheim-backups-auto/1234/{n}", True)
            for n in ("world1.db", "world1.fwl", "world2.db", "world2.fwl")
        ],
    )

    result = make_job(world_descriptor(config, kind="delete"), config, object_store, store).run()

    assert result.ok
    assert object_store.fetched == []
    assert sorted(snapshot(config.worlds_dir)) == ["world2.db", "world2.fwl"]
    assert installed(store, FileCategory.WORLD) == {
        "world1.db": False,
        "world1.fwl": False,
        "world2.db": True,
        "world2.fwl": True,
    }


def test_delete_missing_plain_file_is_not_an_error(config, object_store, store):
    descriptor = make_descriptor(
        source_key="config/1234/valheim_plus.cfg",
        destination_path=str(config.config_dir),
        kind="delete",
        is_archive=False,
    )

    result = make_job(descriptor, config, object_store, store).run()

    assert result.ok
    assert result.category is FileCategory.CONFIG


def test_copy_into_config_dir(config, object_store, store):
    object_store.objects["config/1234/valheim_plus.cfg"] = b"[Server]"
    descriptor = make_descriptor(
        source_key="config/1234/valheim_plus.cfg",
        destination_path=str(config.config_dir / "valheim_plus.cfg"),
        kind="copy",
        is_archive=False,
    )

    result = make_job(descriptor, config, object_store, store).run()

    assert result.ok
    assert result.written == [config.config_dir / "valheim_plus.cfg"]
    assert (config.config_dir / "valheim_plus.cfg").read_bytes() == b"[Server]"
    records = store.get_records("1234", FileCategory.CONFIG)
    assert records == [InstalledFileRecord("valheim_plus.cfg", "config/1234/valheim_plus.cfg", True, 8)]


def test_backup_is_written_but_not_recorded(config, object_store, store):
    name = "world1_backup_auto-20250101120000.db"
    object_store.objects[f"valheim-backups-auto/1234/{name}"] = b"backup"

    result = make_job(world_descriptor(config, name=name), config, object_store, store).run()

    assert result.ok
    assert result.category is FileCategory.BACKUP
    assert (config.worlds_dir / name).read_bytes() == b"backup"
    assert store.get_records("1234", FileCategory.WORLD) == []


# ── Failures ─────────────────────────────────────────────────────────────────

def test_missing_mount_aborts_before_fetch(config, object_store, store, scaler):
    config.worlds_dir.rmdir()

    job = make_job(mod_descriptor(config), config, object_store, store, scaler)
    with pytest.raises(DirectoryError):
        job.run()

    assert object_store.fetched == []
    assert job.state is JobState.CREATED
    assert [c[2] for c in scaler.calls] == [0, 1]


def test_missing_object_aborts(config, object_store, store, scaler):
    job = make_job(mod_descriptor(config), config, object_store, store, scaler)

    with pytest.raises(NotFoundError):
        job.run()

    assert snapshot(config.mods_dir) == {}
    assert store.get_records("1234", FileCategory.MOD) == []
    assert scaler.calls[-1][2] == 1


def test_reconcile_failure_is_not_fatal(config, object_store, store, monkeypatch):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP

    def broken_upsert(*args, **kwargs):
        raise ReconcileError("database is locked")

    monkeypatch.setattr(store, "upsert", broken_upsert)
    result = make_job(mod_descriptor(config), config, object_store, store).run()

    assert not result.ok
    assert result.state is JobState.SCANNED
    assert result.errors == ["database is locked"]
    assert (config.mods_dir / "ValheimPlus" / "ValheimPlus.dll").exists()


def test_resume_failure_raises_after_work_is_done(config, object_store, store):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP
    job = make_job(mod_descriptor(config), config, object_store, store, FakeScaler(fail_on=(1,)))

    with pytest.raises(ScaleError):
        job.run()

    assert job.state is JobState.DONE
    assert installed(store, FileCategory.MOD) == {"ValheimPlus.zip": True}


def test_pause_failure_leaves_volume_untouched(config, object_store, store):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP
    job = make_job(mod_descriptor(config), config, object_store, store, FakeScaler(fail_on=(0,)))

    with pytest.raises(ScaleError):
        job.run()

    assert object_store.fetched == []
    assert snapshot(config.mods_dir) == {}


def test_grace_period_sleep(config, object_store, store, scaler):
    object_store.objects["mods/1234/ValheimPlus.zip"] = MOD_ZIP
    config = config.model_copy(update={"scale_down_grace_seconds": 2.5})
    slept = []

    make_job(mod_descriptor(config), config, object_store, store, scaler, sleep=slept.append).run()

    assert slept == [2.5]


def test_states_only_move_forward(config, object_store, store):
    job = make_job(mod_descriptor(config), config, object_store, store)
    job._advance(JobState.MUTATED)

    with pytest.raises(RuntimeError):
        job._advance(JobState.PAIR_SYNCED)


def test_root_level_dll_in_archive_is_not_a_mod_record(config, object_store, store):
    archive = zip_bytes({"VPlus.dll": "dll", "VPlus.cfg": "cfg"})
    object_store.objects["mods/1234/ValheimPlus.zip"] = archive

    result = make_job(mod_descriptor(config), config, object_store, store).run()

    assert result.ok
    assert (config.mods_dir / "VPlus.dll").read_bytes() == b"dll"
    assert store.get_records("1234", FileCategory.MOD) == [
        InstalledFileRecord("ValheimPlus.zip", "mods/1234/ValheimPlus.zip", True, len(archive))
    ]


def test_cognito_null_world_attribute_counts_as_empty(config, object_store):
    object_store.objects["valheim-backups-auto/1234/world1.db"] = b"db"
    identity = FakeIdentity({"custom:installed_backups": "null"})

    result = make_job(world_descriptor(config), config, object_store, cognito_store(identity)).run()

    assert result.ok
    assert json.loads(identity.attributes["custom:installed_backups"]) == {"world1.db": True, "world1.fwl": True}


def test_malformed_cognito_attribute_is_not_fatal(config, object_store):
    object_store.objects["valheim-backups-auto/1234/world1.db"] = b"db"
    identity = FakeIdentity({"custom:installed_backups": '[{"name": "world1.db"}]'})

    result = make_job(world_descriptor(config), config, object_store, cognito_store(identity)).run()

    assert result.state is JobState.SCANNED
    assert result.errors
    assert (config.worlds_dir / "world1.db").read_bytes() == b"db"
    assert identity.updates == []
