"""Tar archive extraction and writing."""

from .extractor import extract_archive, extract_tar, extract_tar_gz
from .models import ExtractionStats
from .writer import read_archive_manifest, write_image_archive

__all__ = [
    "ExtractionStats",
    "extract_archive",
    "extract_tar",
    "extract_tar_gz",
    "read_archive_manifest",
    "write_image_archive",
]
