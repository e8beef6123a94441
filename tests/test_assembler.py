"""Tests for target preparation, idempotent assembly and cleanup."""

import os

import pytest

from image_rootfs.assembler import (
    assemble,
    cleanup_target,
    is_directory_empty,
    pending_archives,
    prepare_target,
)
from image_rootfs.core.types import CleanupRules
from image_rootfs.exceptions import AssemblyError, ExtractionError
from tests.helpers import build_tar, read_tree


def snapshot(root):
    """Map every path under ``root`` to (mtime_ns, content) for stability checks."""
    result = {}
    for path in sorted(root.rglob("*")):
        st = path.stat()
        result[str(path.relative_to(root))] = (
            st.st_mtime_ns,
            path.read_bytes() if path.is_file() else None,
        )
    return result


@pytest.fixture
def source_archive(tmp_path):
    src = tmp_path / "image.tar"
    src.write_bytes(
        build_tar(
            [
                ("etc/", None),
                ("etc/os-release", b"ID=demo\n"),
                ("usr/bin/app", b"binary"),
                ("opt/bundle.tar.gz", build_tar([("README", b"bundled")], compress=True)),
            ]
        )
    )
    return src


def test_prepare_target_creates_missing(tmp_path):
    target = tmp_path / "redis"
    assert prepare_target(target) is True
    assert target.is_dir()


def test_prepare_target_existing_empty(tmp_path):
    assert prepare_target(tmp_path) is True


def test_prepare_target_populated(tmp_path):
    (tmp_path / "bin").mkdir()
    assert prepare_target(tmp_path) is False


def test_prepare_target_ignores_pending_sources(tmp_path):
    (tmp_path / "layer-0.tar").write_bytes(b"")
    assert prepare_target(tmp_path, ignore=["layer-0.tar"]) is True
    assert prepare_target(tmp_path) is False


def test_prepare_target_rejects_file(tmp_path):
    target = tmp_path / "redis"
    target.write_text("file")
    with pytest.raises(AssemblyError):
        prepare_target(target)


def test_is_directory_empty_missing(tmp_path):
    with pytest.raises(AssemblyError):
        is_directory_empty(tmp_path / "missing")


def test_assemble_extracts_into_new_target(tmp_path, source_archive):
    target = tmp_path / "rootfs"

    result = assemble([source_archive], target)

    assert result.extracted is True
    assert read_tree(target) == {
        "etc/os-release": b"ID=demo\n",
        "opt/README": b"bundled",
        "opt/bundle.tar.gz": (target / "opt" / "bundle.tar.gz").read_bytes(),
        "usr/bin/app": b"binary",
    }


def test_assemble_is_idempotent(tmp_path, source_archive):
    """Test a second run leaves a populated target untouched."""
    first = tmp_path / "first"
    fresh = tmp_path / "fresh"

    assemble([source_archive], first)
    before = snapshot(first)

    result = assemble([source_archive], first)

    assert result.extracted is False
    assert snapshot(first) == before

    # A fresh pass into a new directory produces the same tree
    assemble([source_archive], fresh)
    assert read_tree(fresh) == read_tree(first)


def test_assemble_sources_inside_target(tmp_path):
    """Test per-layer archives living in the target are extracted then removed."""
    target = tmp_path / "redis"
    target.mkdir()
    (target / "layer-0.tar").write_bytes(build_tar([("data/v", b"0"), ("data/base", b"b")]))
    (target / "layer-1.tar").write_bytes(build_tar([("data/v", b"1")]))

    result = assemble([target / "layer-0.tar", target / "layer-1.tar"], target)

    assert result.extracted is True
    assert sorted(os.listdir(target)) == ["data"]
    assert read_tree(target) == {"data/base": b"b", "data/v": b"1"}
    assert {p.name for p in result.cleanup.deleted} == {"layer-0.tar", "layer-1.tar"}


def test_assemble_propagates_extraction_errors(tmp_path):
    src = tmp_path / "broken.tar"
    src.write_bytes(b"garbage" * 100)
    with pytest.raises(ExtractionError):
        assemble([src], tmp_path / "rootfs")


def test_cleanup_deletes_archives_and_renames_config(tmp_path):
    """Test leftover tars are removed and the sha-named blob is renamed."""
    (tmp_path / "layer-0.tar").write_bytes(b"0")
    (tmp_path / "layer-1.tar").write_bytes(b"1")
    (tmp_path / "sha256-abcd").write_bytes(b'{"config": true}')
    (tmp_path / "keep.txt").write_bytes(b"keep")
    (tmp_path / "dir.tar").mkdir()

    report = cleanup_target(tmp_path, CleanupRules(canonical_name="redis"))

    assert sorted(os.listdir(tmp_path)) == ["dir.tar", "keep.txt", "redis"]
    assert (tmp_path / "redis").read_bytes() == b'{"config": true}'
    assert len(report.deleted) == 2
    assert report.renamed == [(tmp_path / "sha256-abcd", tmp_path / "redis")]
    assert report.errors == []


def test_cleanup_default_canonical_name(tmp_path):
    (tmp_path / "sha256:0123").write_bytes(b"{}")
    cleanup_target(tmp_path)
    assert (tmp_path / "config.json").read_bytes() == b"{}"


def test_cleanup_failures_are_logged_not_raised(tmp_path, monkeypatch, caplog):
    """Test a failed delete does not stop the remaining cleanup."""
    (tmp_path / "a.tar").write_bytes(b"a")
    (tmp_path / "b.tar").write_bytes(b"b")
    (tmp_path / "sha-config").write_bytes(b"{}")

    original_unlink = type(tmp_path).unlink

    def flaky_unlink(self, *args, **kwargs):
        if self.name == "a.tar":
            raise PermissionError("denied")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(type(tmp_path), "unlink", flaky_unlink)

    report = cleanup_target(tmp_path)

    assert [path.name for path, _ in report.errors] == ["a.tar"]
    assert [path.name for path in report.deleted] == ["b.tar"]
    assert (tmp_path / "config.json").exists()
    assert "Failed to delete" in caplog.text


def test_cleanup_runs_when_extraction_skipped(tmp_path, source_archive):
    target = tmp_path / "rootfs"
    target.mkdir()
    (target / "stale.tar").write_bytes(b"x")
    (target / "bin").mkdir()

    result = assemble([source_archive], target)

    assert result.extracted is False
    assert not (target / "stale.tar").exists()


def test_pending_archives(tmp_path):
    (tmp_path / "layer-0.tar").write_bytes(b"")
    (tmp_path / "demo.tar").write_bytes(b"")
    (tmp_path / "layers.tar.d").mkdir()
    (tmp_path / "README").write_bytes(b"")

    assert pending_archives(tmp_path) == ["demo.tar", "layer-0.tar"]
    assert pending_archives(tmp_path, CleanupRules(archive_marker=".tgz")) == []
    with pytest.raises(AssemblyError):
        pending_archives(tmp_path / "missing")


def test_assemble_ignores_stale_archives(tmp_path, source_archive):
    """Test an archive left by an earlier failed run does not block extraction."""
    target = tmp_path / "rootfs"
    target.mkdir()
    (target / "layer-3.tar").write_bytes(b"partial")

    result = assemble([source_archive], target)

    assert result.extracted is True
    assert (target / "usr" / "bin" / "app").read_bytes() == b"binary"
    assert not (target / "layer-3.tar").exists()
