from datetime import datetime
from pathlib import Path

import pytest

from nginx_admin.config import BackupError, BackupStore, InvalidNameError, NotFoundError

from tests.fakes import FixedClock


def test_create_uses_timestamped_name(store: BackupStore):
    backup = store.create("nginx.conf", b"events {}\n")

    assert backup.name == "nginx.conf.20240501_120000.backup"
    assert backup.artifact == "nginx.conf"
    assert backup.size == len(b"events {}\n")
    assert (store.backup_dir / backup.name).read_bytes() == b"events {}\n"


def test_server_backup_keeps_file_name(store: BackupStore):
    backup = store.create("example.conf", b"server {}")
    assert backup.name == "example.conf.20240501_120000.backup"


def test_same_second_gets_counter_and_never_overwrites(store: BackupStore):
    first = store.create("nginx.conf", b"one")
    second = store.create("nginx.conf", b"two")
    third = store.create("nginx.conf", b"three")

    assert first.name == "nginx.conf.20240501_120000.backup"
    assert second.name == "nginx.conf.20240501_120000_01.backup"
    assert third.name == "nginx.conf.20240501_120000_02.backup"
    assert store.get(first.name) == b"one"
    assert store.get(second.name) == b"two"


def test_counter_exhaustion_raises(tmp_path: Path):
    store = BackupStore(tmp_path / "b", clock=FixedClock())
    for _ in range(100):
        store.create("nginx.conf", b"x")
    with pytest.raises(BackupError):
        store.create("nginx.conf", b"x")


def test_list_is_name_descending_and_chronological(store: BackupStore, clock: FixedClock):
    created = []
    for content in (b"a", b"b"):
        created.append(store.create("nginx.conf", content).name)
    clock.advance(1)
    created.append(store.create("nginx.conf", b"c").name)
    clock.advance(3600)
    created.append(store.create("nginx.conf", b"d").name)

    names = [b.name for b in store.list()]
    assert names == sorted(names, reverse=True)
    # Most recent first equals reverse creation order
    assert names == list(reversed(created))


def test_timestamp_never_goes_backwards(store: BackupStore, clock: FixedClock):
    clock.advance(10)
    later = store.create("nginx.conf", b"later")
    clock.now = datetime(2024, 5, 1, 11, 0, 0)
    earlier_clock = store.create("nginx.conf", b"clock went back")

    assert earlier_clock.name > later.name


def test_list_filters_by_artifact_and_ignores_other_files(store: BackupStore):
    store.create("nginx.conf", b"main")
    store.create("site.conf", b"site")
    (store.backup_dir / "notes.txt").write_text("not a backup")
    (store.backup_dir / "manual.backup").write_text("dropped in by hand")

    assert [b.artifact for b in store.list("site.conf")] == ["site.conf"]
    names = {b.name for b in store.list()}
    assert "notes.txt" not in names
    assert "manual.backup" in names


def test_list_entry_serializes(store: BackupStore):
    store.create("nginx.conf", b"12345")
    entry = store.list()[0].to_dict()
    assert entry == {
        "name": "nginx.conf.20240501_120000.backup",
        "size": 5,
        "created": "2024-05-01T12:00:00"
    }


@pytest.mark.parametrize("name", [
    "../nginx.conf.20240501_120000.backup",
    "..",
    "",
    "sub/dir.backup",
    "nginx.conf",
])
def test_get_rejects_unsafe_names(store: BackupStore, name: str):
    with pytest.raises(InvalidNameError):
        store.get(name)


def test_get_and_delete_missing(store: BackupStore):
    with pytest.raises(NotFoundError):
        store.get("nginx.conf.20240501_120000.backup")
    with pytest.raises(NotFoundError):
        store.delete("nginx.conf.20240501_120000.backup")


def test_delete_removes_file(store: BackupStore):
    backup = store.create("nginx.conf", b"x")
    store.delete(backup.name)
    assert store.list() == []


def test_create_rejects_unsafe_artifact(store: BackupStore):
    with pytest.raises(InvalidNameError):
        store.create("../escape", b"x")


def test_create_surfaces_write_errors(store: BackupStore, monkeypatch):
    def boom(*args, **kwargs):
        raise PermissionError("read-only file system")

    monkeypatch.setattr("nginx_admin.config.backups.open", boom, raising=False)
    with pytest.raises(BackupError):
        store.create("nginx.conf", b"x")


def test_artifact_of():
    assert BackupStore.artifact_of("nginx.conf.20240501_120000.backup") == "nginx.conf"
    assert BackupStore.artifact_of("a.b.conf.20240501_120000_07.backup") == "a.b.conf"
    with pytest.raises(InvalidNameError):
        BackupStore.artifact_of("nginx.conf.backup")
