"""Utility functions for the image rootfs puller."""

from .digest import (
    DigestVerifier,
    calculate_digest,
    digest_hex,
    validate_digest,
    verify_digest,
)

__all__ = [
    "DigestVerifier",
    "calculate_digest",
    "digest_hex",
    "validate_digest",
    "verify_digest",
]
