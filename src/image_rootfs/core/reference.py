"""Parsing of symbolic image names into structured references."""

import re
from dataclasses import dataclass

from ..exceptions import ImageReferenceError

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
OFFICIAL_NAMESPACE = "library"

_REGISTRY_ALIASES = {"index.docker.io": DEFAULT_REGISTRY}

# Path components: lowercase alphanumerics joined by separators
_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST_PATTERN = re.compile(r"^sha256:[a-f0-9]{64}$")
_MAX_REPOSITORY_LENGTH = 255


@dataclass(frozen=True)
class ImageReference:
    """A fully-qualified registry/repository reference with a tag or digest."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @property
    def identifier(self) -> str:
        """The manifest reference sent to the registry (digest wins over tag)."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def name(self) -> str:
        """Last path component of the repository (e.g. ``redis``)."""
        return self.repository.rsplit("/", 1)[-1]

    def scope(self, action: str = "pull") -> str:
        return f"repository:{self.repository}:{action}"

    def __str__(self) -> str:
        base = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{base}@{self.digest}"
        return f"{base}:{self.tag}"


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def _check_repository(repository: str, name: str) -> None:
    if len(repository) > _MAX_REPOSITORY_LENGTH:
        raise ImageReferenceError(
            f"Invalid repository in {name!r}: must be at most "
            f"{_MAX_REPOSITORY_LENGTH} characters"
        )
    for component in repository.split("/"):
        if not _COMPONENT_PATTERN.match(component):
            raise ImageReferenceError(
                f"Invalid repository component {component!r} in {name!r}"
            )


def parse_reference(name: str) -> ImageReference:
    """Parse an image name into an :class:`ImageReference`.

    Args:
        name: Image name such as ``redis``, ``ghcr.io/org/app:v1`` or
            ``localhost:5000/app@sha256:...``

    Returns:
        Parsed, normalized reference

    Raises:
        ImageReferenceError: If the name is empty or malformed
    """
    if not isinstance(name, str) or not name.strip():
        raise ImageReferenceError("An image name must be specified")
    remainder = name.strip()

    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST_PATTERN.match(digest):
            raise ImageReferenceError(f"Invalid digest in {name!r}: {digest}")

    tag = None
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        if not _TAG_PATTERN.match(tag):
            raise ImageReferenceError(f"Invalid tag in {name!r}: {tag!r}")

    parts = remainder.split("/", 1)
    if len(parts) == 2 and _looks_like_registry(parts[0]):
        registry, repository = parts
    else:
        registry, repository = DEFAULT_REGISTRY, remainder
    registry = _REGISTRY_ALIASES.get(registry, registry)

    if not repository:
        raise ImageReferenceError(f"Missing repository in {name!r}")
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"{OFFICIAL_NAMESPACE}/{repository}"
    _check_repository(repository, name)

    if digest is None and tag is None:
        tag = DEFAULT_TAG

    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest)
