"""Custom exceptions for the image rootfs puller."""


class RootfsError(Exception):
    """Base exception for all rootfs pipeline errors."""

    pass


class ImageReferenceError(RootfsError):
    """Raised when an image name cannot be parsed into a reference."""

    pass


class RegistryError(RootfsError):
    """Raised when the registry returns an error or cannot be reached."""

    pass


class AuthenticationError(RegistryError):
    """Raised when a registry token cannot be obtained."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class BlobError(RegistryError):
    """Raised when a blob download fails or its digest does not match."""

    pass


class FetchError(RootfsError):
    """Raised when fetching an image fails after every retry attempt."""

    def __init__(self, reference: str, attempts: int, last_error: BaseException):
        self.reference = reference
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to fetch image {reference} after {attempts} attempt(s): "
            f"{last_error}"
        )


class LayerWriteError(RootfsError):
    """Raised when one or more layers could not be persisted.

    ``failures`` holds every ``(layer index, cause)`` pair, ordered by index.
    """

    def __init__(self, failures: list[tuple[int, BaseException]]):
        self.failures = sorted(failures, key=lambda item: item[0])
        details = "; ".join(f"layer {i}: {err}" for i, err in self.failures)
        super().__init__(f"{len(self.failures)} layer(s) failed to write: {details}")

    @property
    def first(self) -> BaseException:
        """The cause reported for the lowest failing layer index."""
        return self.failures[0][1]


class ArchiveWriteError(RootfsError):
    """Raised when an image tarball cannot be written."""

    pass


class ExtractionError(RootfsError):
    """Raised when an archive cannot be read or unpacked."""

    pass


class UnsafeEntryError(ExtractionError):
    """Raised when an archive entry would be written outside its destination."""

    pass


class AssemblyError(RootfsError):
    """Raised when the target directory cannot be created or inspected."""

    pass
