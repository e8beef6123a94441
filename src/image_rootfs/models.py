"""Data models for resolved images and assembly results."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from .core.reference import ImageReference


@dataclass
class RemoteLayer:
    """One entry of an image's ordered layer list."""

    index: int
    digest: str
    size: int
    media_type: str
    opener: Callable[[], AsyncIterator[bytes]] = field(repr=False)

    def stream(self) -> AsyncIterator[bytes]:
        """Open the layer blob as a single-use async byte stream."""
        return self.opener()


@dataclass
class RemoteImage:
    """An image resolved from a registry: manifest, config and layers."""

    reference: ImageReference
    manifest: dict[str, Any]
    manifest_digest: str
    config: bytes
    layers: list[RemoteLayer]

    @property
    def config_digest(self) -> str:
        return self.manifest["config"]["digest"]


@dataclass
class CleanupReport:
    """Outcome of the best-effort cleanup pass over a target directory."""

    deleted: list[Path] = field(default_factory=list)
    renamed: list[tuple[Path, Path]] = field(default_factory=list)
    errors: list[tuple[Path, OSError]] = field(default_factory=list)


@dataclass
class AssemblyResult:
    """Result of assembling a root filesystem into a target directory."""

    target: Path
    extracted: bool
    cleanup: CleanupReport
    sources: list[Path] = field(default_factory=list)
