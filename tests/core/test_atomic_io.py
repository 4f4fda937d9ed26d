import os
from pathlib import Path
from unittest.mock import patch

import pytest

from sake.core.io import atomic_write_text, ensure_file
from sake.core.store import Store
from sake.core.task import Task


def test_atomic_write_calls_os_replace(tmp_path: Path):
    target = tmp_path / "target.txt"
    with patch("sake.core.io.os.replace", wraps=os.replace) as mock_replace:
        atomic_write_text(target, "hello world")
    assert target.read_text() == "hello world"
    assert mock_replace.called
    assert Path(mock_replace.call_args.args[1]) == target


def test_atomic_write_failure_does_not_create_partial_destination(tmp_path: Path):
    workdir = tmp_path / "work"
    workdir.mkdir()
    target = workdir / "target.txt"
    with (
        patch("sake.core.io.os.fdopen", side_effect=OSError("write failed")),
        pytest.raises(OSError, match="write failed"),
    ):
        atomic_write_text(target, "half written data")

    assert not target.exists()
    assert list(workdir.iterdir()) == []


def test_store_save_failure_keeps_previous_store(tmp_path: Path):
    path = tmp_path / "store" / ".sake"
    path.parent.mkdir()
    path.write_text("task 'kept' do\nend\n")
    store = Store(path)
    store.add(Task("new"))

    with (
        patch("sake.core.io.os.replace", side_effect=OSError("disk full")),
        pytest.raises(OSError, match="disk full"),
    ):
        store.save()

    assert path.read_text() == "task 'kept' do\nend\n"
    assert sorted(p.name for p in path.parent.iterdir()) == [".sake"]


def test_atomic_write_overwrites_and_leaves_no_scratch_files(tmp_path: Path):
    workdir = tmp_path / "work"
    target = workdir / ".sake"
    atomic_write_text(target, "old")
    atomic_write_text(target, "new")
    assert target.read_text() == "new"
    assert [p.name for p in workdir.iterdir()] == [".sake"]


def test_ensure_file_creates_parents_and_keeps_content(tmp_path: Path):
    path = tmp_path / "a" / "b" / ".sake"
    assert ensure_file(path) == path
    assert path.read_text() == ""
    path.write_text("task :a\n")
    ensure_file(path)
    assert path.read_text() == "task :a\n"
