"""image-rootfs - pull a container image and unpack it into a root filesystem."""

__version__ = "0.1.0"

from .assembler import assemble, cleanup_target, prepare_target
from .core.reference import ImageReference, parse_reference
from .core.registry_client import RegistryClient
from .core.types import CleanupRules, Platform, PullConfig, RegistryConfig, RetryPolicy
from .exceptions import (
    ArchiveWriteError,
    AssemblyError,
    AuthenticationError,
    BlobError,
    ExtractionError,
    FetchError,
    ImageReferenceError,
    LayerWriteError,
    ManifestError,
    RegistryError,
    RootfsError,
    UnsafeEntryError,
)
from .layers import write_layers
from .pipeline import pull_rootfs
from .registry import fetch_image, resolve_image
from .tar import extract_archive, extract_tar, extract_tar_gz, write_image_archive

__all__ = [
    "ArchiveWriteError",
    "AssemblyError",
    "AuthenticationError",
    "BlobError",
    "CleanupRules",
    "ExtractionError",
    "FetchError",
    "ImageReference",
    "ImageReferenceError",
    "LayerWriteError",
    "ManifestError",
    "Platform",
    "PullConfig",
    "RegistryClient",
    "RegistryConfig",
    "RegistryError",
    "RetryPolicy",
    "RootfsError",
    "UnsafeEntryError",
    "assemble",
    "cleanup_target",
    "extract_archive",
    "extract_tar",
    "extract_tar_gz",
    "fetch_image",
    "parse_reference",
    "prepare_target",
    "pull_rootfs",
    "resolve_image",
    "write_image_archive",
    "write_layers",
]
