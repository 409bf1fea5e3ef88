import hashlib

import pytest
from typer.testing import CliRunner

from hashfolder.cli import app
from hashfolder.config import ALGORITHMS_ENV, CONCURRENCY_ENV


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONCURRENCY_ENV, raising=False)
    monkeypatch.delenv(ALGORITHMS_ENV, raising=False)


@pytest.fixture
def folder(tmp_path):
    root = tmp_path / "photos"
    (root / "2023").mkdir(parents=True)
    (root / "2024").mkdir()
    (root / "2023" / "img.jpg").write_bytes(b"jpeg bytes")
    (root / "2024" / "copy.jpg").write_bytes(b"jpeg bytes")
    (root / "notes.txt").write_text("notes")
    return root


def _update(db_path, folder, *args):
    return runner.invoke(app, ["update", str(db_path), str(folder), "--concurrency", "2", *args])


def test_update_then_show(tmp_path, folder):
    db_path = tmp_path / "index.db"
    result = _update(db_path, folder, "-a", "sha256", "-a", "GIT-SHA1")
    assert result.exit_code == 0, result.output
    lines = [line.split() for line in result.stdout.splitlines() if line.strip()]
    root_digests = {line[0]: line[1] for line in lines if line[0] in {"SHA256", "GIT-SHA1"}}
    assert set(root_digests) == {"SHA256", "GIT-SHA1"}

    shown = runner.invoke(app, ["show", str(db_path)])
    assert shown.exit_code == 0, shown.output
    assert root_digests["SHA256"] in shown.stdout
    assert root_digests["GIT-SHA1"] in shown.stdout

    file_hash = runner.invoke(app, ["show", str(db_path), "notes.txt", "--algorithm", "sha256"])
    assert file_hash.exit_code == 0
    assert hashlib.sha256(b"notes").hexdigest() in file_hash.stdout
    assert "GIT-SHA1" not in file_hash.stdout


@pytest.mark.parametrize("path", ["./notes.txt", "notes.txt", "notes.txt/"])
def test_show_normalizes_paths(tmp_path, folder, path):
    db_path = tmp_path / "index.db"
    assert _update(db_path, folder).exit_code == 0
    result = runner.invoke(app, ["show", str(db_path), path])
    assert result.exit_code == 0, result.output
    assert hashlib.sha256(b"notes").hexdigest() in result.stdout


def test_show_accepts_trailing_slash_and_empty_path(tmp_path, folder):
    db_path = tmp_path / "index.db"
    assert _update(db_path, folder).exit_code == 0
    with_slash = runner.invoke(app, ["show", str(db_path), "2023/"])
    plain = runner.invoke(app, ["show", str(db_path), "2023"])
    assert with_slash.exit_code == 0, with_slash.output
    assert with_slash.stdout == plain.stdout
    empty = runner.invoke(app, ["show", str(db_path), ""])
    root = runner.invoke(app, ["show", str(db_path)])
    assert empty.exit_code == 0, empty.output
    assert empty.stdout == root.stdout


def test_show_missing_path(tmp_path, folder):
    db_path = tmp_path / "index.db"
    assert _update(db_path, folder).exit_code == 0
    result = runner.invoke(app, ["show", str(db_path), "nope.txt"])
    assert result.exit_code == 1


def test_config_file_supplies_default_algorithms(tmp_path, folder):
    (tmp_path / ".hashfolder.json").write_text('{"algorithms": ["MD5"]}')
    db_path = tmp_path / "index.db"
    result = _update(db_path, folder)
    assert result.exit_code == 0, result.output
    assert "MD5" in result.stdout

    listed = runner.invoke(app, ["algorithms", str(db_path)])
    assert listed.stdout.split() == ["MD5"]


def test_find_duplicates_and_checksum(tmp_path, folder):
    db_path = tmp_path / "index.db"
    assert _update(db_path, folder).exit_code == 0

    duplicates = runner.invoke(app, ["find-duplicates", str(db_path)])
    assert duplicates.exit_code == 0, duplicates.output
    assert "1 duplicate file(s), 10 bytes" in duplicates.stdout

    checksum = hashlib.sha256(b"jpeg bytes").hexdigest()
    found = runner.invoke(app, ["find-checksum", str(db_path), checksum])
    assert found.exit_code == 0, found.output
    assert "img.jpg" in found.stdout
    assert "copy.jpg" in found.stdout

    missing = runner.invoke(app, ["find-checksum", str(db_path), "00" * 32])
    assert missing.exit_code == 0
    assert "not found" in missing.stdout


def test_no_duplicates(tmp_path):
    root = tmp_path / "unique"
    root.mkdir()
    (root / "a").write_text("a")
    (root / "b").write_text("b")
    db_path = tmp_path / "index.db"
    assert _update(db_path, root).exit_code == 0

    result = runner.invoke(app, ["find-duplicates", str(db_path)])
    assert result.exit_code == 0
    assert "There is no duplicate file." in result.stdout


def test_duplicates_for_missing_algorithm_fails(tmp_path, folder):
    db_path = tmp_path / "index.db"
    assert _update(db_path, folder).exit_code == 0
    result = runner.invoke(app, ["find-duplicates", str(db_path), "-a", "SHA1"])
    assert result.exit_code == 1


def test_unknown_algorithm_fails_without_creating_index(tmp_path, folder):
    db_path = tmp_path / "index.db"
    result = _update(db_path, folder, "-a", "NOT-A-HASH")
    assert result.exit_code == 1
    assert not db_path.exists()


def test_incompatible_file_is_rejected(tmp_path, folder):
    db_path = tmp_path / "index.db"
    db_path.write_text("plain text, not an index " * 10)
    result = _update(db_path, folder)
    assert result.exit_code == 1


def test_algorithms_lists_git_variants():
    result = runner.invoke(app, ["algorithms"])
    assert result.exit_code == 0
    names = result.stdout.split()
    assert "SHA256" in names
    assert "GIT-SHA256" in names
