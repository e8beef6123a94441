"""Configuration types shared across the pipeline."""

from dataclasses import dataclass, field

STRATEGIES = ("layers", "archive")


@dataclass(frozen=True)
class Platform:
    """Target platform used to pick an entry out of a manifest index."""

    os: str = "linux"
    architecture: str = "amd64"
    variant: str | None = None

    def matches(self, platform: dict) -> bool:
        if platform.get("os") != self.os:
            return False
        if platform.get("architecture") != self.architecture:
            return False
        if self.variant and platform.get("variant") != self.variant:
            return False
        return True

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


@dataclass
class RegistryConfig:
    """Registry transport configuration.

    Args:
        timeout: Total request timeout in seconds
        chunk_size: Size of chunks read from blob responses
        platform: Platform selected from multi-arch indexes
        insecure_registries: Hosts reached over plain HTTP
    """

    timeout: int = 300
    chunk_size: int = 1024 * 1024
    platform: Platform = field(default_factory=Platform)
    insecure_registries: tuple[str, ...] = ("localhost", "127.0.0.1")

    def base_url(self, registry: str) -> str:
        """Return the API base URL for a registry host."""
        host = "registry-1.docker.io" if registry == "docker.io" else registry
        hostname = registry.split(":", 1)[0]
        scheme = "http" if hostname in self.insecure_registries else "https"
        return f"{scheme}://{host}"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-count, fixed-delay retry for image fetches."""

    attempts: int = 3
    delay: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")


@dataclass(frozen=True)
class CleanupRules:
    """Naming rules applied to the target directory after extraction.

    Non-directory entries whose name contains ``archive_marker`` are deleted;
    otherwise entries whose name contains ``config_marker`` are renamed to
    ``canonical_name``.
    """

    archive_marker: str = ".tar"
    config_marker: str = "sha"
    canonical_name: str = "config.json"


@dataclass
class PullConfig:
    """Top-level configuration for :func:`image_rootfs.pipeline.pull_rootfs`."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cleanup: CleanupRules = field(default_factory=CleanupRules)
    max_concurrency: int = 4
    strategy: str = "layers"

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(
                f"Unknown strategy {self.strategy!r}, expected one of {STRATEGIES}"
            )
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
