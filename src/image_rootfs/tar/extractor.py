"""Sequential tar extraction with recursion into nested ``.tar.gz`` files."""

import logging
import os
import shutil
import tarfile
import zlib
from pathlib import Path

from ..exceptions import ExtractionError, UnsafeEntryError
from .models import ExtractionStats

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
NESTED_ARCHIVE_SUFFIX = ".tar.gz"

_READ_ERRORS = (OSError, tarfile.TarError, EOFError, zlib.error)


def is_gzip(path: Path) -> bool:
    """Return True when the file starts with the gzip magic bytes."""
    try:
        with open(path, "rb") as f:
            return f.read(len(GZIP_MAGIC)) == GZIP_MAGIC
    except OSError as e:
        raise ExtractionError(f"Failed to open archive {path}: {e}") from e


def resolve_entry_path(dest: Path, name: str) -> Path:
    """Map an entry name onto ``dest``, refusing names that escape it.

    Raises:
        UnsafeEntryError: If the normalized name points outside ``dest``
    """
    relative = os.path.normpath(name.lstrip("/"))
    if relative == "." or not relative:
        return dest
    if relative == ".." or relative.startswith(".." + os.sep):
        raise UnsafeEntryError(f"Entry {name!r} would be written outside {dest}")
    return dest / relative


def _write_file(tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() or (target.exists() and not target.is_dir()):
        target.unlink()

    source = tar.extractfile(member)
    if source is None:
        raise ExtractionError(f"Could not read content of {member.name}")
    with source, open(target, "wb") as out:
        shutil.copyfileobj(source, out)
    os.chmod(target, member.mode & 0o7777)


def _apply_entry(
    tar: tarfile.TarFile, member: tarfile.TarInfo, dest: Path, stats: ExtractionStats
) -> None:
    target = resolve_entry_path(dest, member.name)

    if member.isdir():
        os.makedirs(target, mode=member.mode & 0o7777, exist_ok=True)
        stats.directories += 1
    elif member.isreg():
        _write_file(tar, member, target)
        stats.files += 1
        if member.name.endswith(NESTED_ARCHIVE_SUFFIX):
            logger.info("Extracting nested .tar.gz file: %s", target)
            stats.merge(extract_tar_gz(target, target.parent))
            stats.nested_archives += 1
    else:
        logger.debug("Skipping %s (unsupported entry type %r)", member.name, member.type)
        stats.skipped += 1


def _extract(src: Path, dest: Path, mode: str) -> ExtractionStats:
    stats = ExtractionStats()
    try:
        dest.mkdir(parents=True, exist_ok=True)
        with tarfile.open(src, mode) as tar:
            for member in tar:
                _apply_entry(tar, member, dest, stats)
    except _READ_ERRORS as e:
        raise ExtractionError(f"Failed to extract {src}: {e}") from e
    return stats


def extract_tar(src: Path, dest: Path) -> ExtractionStats:
    """Extract a plain tar archive into ``dest``.

    Entries are applied in archive order, so the last entry for a path wins.

    Raises:
        ExtractionError: On any read or write failure
    """
    return _extract(Path(src), Path(dest), "r:")


def extract_tar_gz(src: Path, dest: Path) -> ExtractionStats:
    """Extract a gzip-compressed tar archive into ``dest``.

    Raises:
        ExtractionError: On any read or write failure
    """
    return _extract(Path(src), Path(dest), "r:gz")


def extract_archive(src: Path, dest: Path) -> ExtractionStats:
    """Extract a plain or gzip-compressed tar, chosen by sniffing the header.

    Args:
        src: Archive path
        dest: Destination directory, created if absent

    Returns:
        Counts of applied and skipped entries, nested archives included

    Raises:
        ExtractionError: On any read or write failure
    """
    src = Path(src)
    if is_gzip(src):
        return extract_tar_gz(src, dest)
    return extract_tar(src, dest)
