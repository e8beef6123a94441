"""Assembly of an extracted root filesystem into a target directory.

Assembly is idempotent in the weak sense: a target that already holds
content is assumed to be a finished rootfs and is never re-extracted or
verified. Cleanup runs on every invocation and is best effort; a failed
delete or rename is logged and recorded, never raised.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from .core.types import CleanupRules
from .exceptions import AssemblyError
from .models import AssemblyResult, CleanupReport
from .tar.extractor import extract_archive

logger = logging.getLogger(__name__)


def is_directory_empty(path: Path, ignore: Iterable[str] = ()) -> bool:
    """Return True when ``path`` holds no entries besides those in ``ignore``.

    Raises:
        AssemblyError: If the directory cannot be listed
    """
    ignored = set(ignore)
    try:
        with os.scandir(path) as entries:
            return all(entry.name in ignored for entry in entries)
    except OSError as e:
        raise AssemblyError(f"Error checking directory {path}: {e}") from e


def pending_archives(target: Path, rules: CleanupRules | None = None) -> list[str]:
    """Names of archive files left in ``target`` by an unfinished assembly.

    These are the files cleanup would delete, so they never count as content.

    Raises:
        AssemblyError: If the directory cannot be listed
    """
    rules = rules or CleanupRules()
    try:
        with os.scandir(target) as entries:
            return sorted(
                entry.name
                for entry in entries
                if rules.archive_marker in entry.name
                and not entry.is_dir(follow_symlinks=False)
            )
    except OSError as e:
        raise AssemblyError(f"Error checking directory {target}: {e}") from e


def prepare_target(target: Path, ignore: Iterable[str] = ()) -> bool:
    """Make sure ``target`` exists and report whether it still needs extraction.

    Args:
        target: Root filesystem directory
        ignore: Entry names (pending source archives) that do not count as content

    Returns:
        True if the directory is empty and extraction should run

    Raises:
        AssemblyError: If the directory cannot be created or inspected
    """
    if not target.exists():
        try:
            target.mkdir(mode=0o755, parents=True)
        except OSError as e:
            raise AssemblyError(f"Failed to create directory {target}: {e}") from e
        logger.info("Directory created: %s", target)
        return True

    if not target.is_dir():
        raise AssemblyError(f"{target} exists and is not a directory")

    if is_directory_empty(target, ignore):
        return True
    logger.info("Directory already assembled, skipping extraction: %s", target)
    return False


def cleanup_target(target: Path, rules: CleanupRules | None = None) -> CleanupReport:
    """Delete leftover archives and normalize the config file name in ``target``.

    Only the immediate entries of ``target`` are considered and directories
    are never touched.
    """
    rules = rules or CleanupRules()
    report = CleanupReport()
    try:
        entries = sorted(os.scandir(target), key=lambda entry: entry.name)
    except OSError as e:
        logger.warning("Cannot list %s for cleanup: %s", target, e)
        report.errors.append((target, e))
        return report

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            continue
        path = Path(entry.path)
        if rules.archive_marker in entry.name:
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Failed to delete %s: %s", path, e)
                report.errors.append((path, e))
            else:
                logger.info("Deleted: %s", path)
                report.deleted.append(path)
        elif rules.config_marker in entry.name:
            renamed = path.with_name(rules.canonical_name)
            try:
                path.replace(renamed)
            except OSError as e:
                logger.warning("Failed to rename %s: %s", path, e)
                report.errors.append((path, e))
            else:
                logger.info("Renamed: %s -> %s", path.name, renamed.name)
                report.renamed.append((path, renamed))
    return report


def assemble(
    sources: Sequence[Path], target: Path, rules: CleanupRules | None = None
) -> AssemblyResult:
    """Extract ``sources`` in order into ``target`` and clean up afterwards.

    Extraction is skipped when ``target`` already holds anything besides the
    sources themselves and leftover archives. Cleanup always runs.

    Raises:
        AssemblyError: If the target cannot be prepared
        ExtractionError: If any source fails to extract
    """
    sources = [Path(source) for source in sources]
    ignore = {source.name for source in sources if source.parent == target}
    if target.is_dir():
        ignore.update(pending_archives(target, rules))
    extracted = prepare_target(target, ignore)

    if extracted:
        for source in sources:
            logger.info("Extracting %s into %s", source, target)
            stats = extract_archive(source, target)
            logger.info(
                "Extracted %s: %d files, %d directories, %d skipped, %d nested",
                source.name,
                stats.files,
                stats.directories,
                stats.skipped,
                stats.nested_archives,
            )

    report = cleanup_target(target, rules)
    return AssemblyResult(
        target=target, extracted=extracted, cleanup=report, sources=sources
    )
