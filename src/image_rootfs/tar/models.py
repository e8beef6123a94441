"""Data models for archive extraction."""

from dataclasses import dataclass


@dataclass
class ExtractionStats:
    """Counts of archive entries applied during one extraction pass.

    Nested archives are folded into the stats of the archive that contained them.
    """

    directories: int = 0
    files: int = 0
    skipped: int = 0
    nested_archives: int = 0

    def merge(self, other: "ExtractionStats") -> None:
        self.directories += other.directories
        self.files += other.files
        self.skipped += other.skipped
        self.nested_archives += other.nested_archives
