from pathlib import Path

import pytest

from conftest import DummyLogger
from endpointremediator.errors import ActionFailed
from endpointremediator.services.backup import BackupCollector
from endpointremediator.services.filesystem import FileSystemService

GB = 1024 ** 3


class SizedFileSystem(FileSystemService):
    def __init__(self, size, free):
        super().__init__(logger=DummyLogger())
        self.size = size
        self.free = free
        self.copies = []

    def tree_size(self, path):
        return self.size

    def free_space(self, path):
        return self.free

    def copy(self, source, destination, collision="suffix"):
        self.copies.append((source, destination, collision))


def _source(tmp_path):
    source = tmp_path / "OneDrive"
    source.mkdir()
    return source


def test_backup_refuses_when_free_space_below_margin(tmp_path):
    filesystem = SizedFileSystem(size=10 * GB, free=9 * GB)
    collector = BackupCollector(filesystem, DummyLogger())

    manifest = collector.backup(str(_source(tmp_path)), str(tmp_path / "backup"))

    assert manifest is None
    assert filesystem.copies == []


def test_backup_copies_when_free_space_covers_margin(tmp_path):
    filesystem = SizedFileSystem(size=10 * GB, free=12 * GB)
    collector = BackupCollector(filesystem, DummyLogger())

    manifest = collector.backup(str(_source(tmp_path)), str(tmp_path / "backup"))

    assert manifest is not None
    assert manifest.byte_size == 10 * GB
    assert manifest.free_space == 12 * GB
    assert "OneDrive-backup-" in manifest.destination_path
    assert filesystem.copies == [(str(tmp_path / "OneDrive"), manifest.destination_path, "suffix")]


def test_backup_requires_ten_percent_margin(tmp_path):
    collector = BackupCollector(SizedFileSystem(size=100, free=111), DummyLogger())
    assert collector.backup(str(_source(tmp_path)), str(tmp_path / "backup")) is not None

    collector = BackupCollector(SizedFileSystem(size=100, free=109), DummyLogger())
    assert collector.backup(str(tmp_path / "OneDrive"), str(tmp_path / "backup")) is None


def test_backup_of_missing_source_fails(tmp_path):
    collector = BackupCollector(SizedFileSystem(size=1, free=10), DummyLogger())

    with pytest.raises(ActionFailed, match="does not exist"):
        collector.backup(str(tmp_path / "missing"), str(tmp_path / "backup"))


def test_backup_leaves_source_untouched(tmp_path):
    source = _source(tmp_path)
    (source / "notes.txt").write_text("keep me", encoding="utf-8")
    collector = BackupCollector(FileSystemService(logger=DummyLogger()), DummyLogger())

    manifest = collector.backup(str(source), str(tmp_path / "backup"))

    assert (source / "notes.txt").read_text(encoding="utf-8") == "keep me"
    assert (Path(manifest.destination_path) / "notes.txt").exists()


def test_collect_flattens_files_with_suffix_on_collision(tmp_path):
    first = tmp_path / "a" / "Stream_Autocomplete_0.dat"
    second = tmp_path / "b" / "Stream_Autocomplete_0.dat"
    first.parent.mkdir()
    second.parent.mkdir()
    first.write_text("one", encoding="utf-8")
    second.write_text("two", encoding="utf-8")
    collector = BackupCollector(FileSystemService(logger=DummyLogger()), DummyLogger())

    manifest = collector.collect([str(first), str(second)], str(tmp_path / "collected"))

    assert manifest.byte_size == 6
    assert (tmp_path / "collected" / "Stream_Autocomplete_0.dat").read_text(encoding="utf-8") == "one"
    assert (tmp_path / "collected" / "Stream_Autocomplete_0 (1).dat").read_text(encoding="utf-8") == "two"
