"""Write a resolved image as a single docker-save style tarball."""

import asyncio
import gzip
import io
import json
import logging
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Any

import aiofiles

from ..exceptions import ArchiveWriteError, ExtractionError
from ..models import RemoteImage
from ..utils.digest import digest_hex
from .extractor import NESTED_ARCHIVE_SUFFIX, is_gzip

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"


def layer_member_name(digest: str) -> str:
    """Archive member name for a layer blob (``<hex>.tar.gz``)."""
    return f"{digest_hex(digest)}{NESTED_ARCHIVE_SUFFIX}"


def build_archive_manifest(image: RemoteImage) -> list[dict[str, Any]]:
    """Build the ``manifest.json`` content describing the archive layout."""
    return [
        {
            "Config": image.config_digest,
            "RepoTags": [str(image.reference)],
            "Layers": [layer_member_name(layer.digest) for layer in image.layers],
        }
    ]


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, fileobj=io.BytesIO(data))


def _ensure_gzip(blob: Path) -> Path:
    """Return a gzip-compressed version of ``blob``, compressing it if needed."""
    if is_gzip(blob):
        return blob
    compressed = blob.with_name(blob.name + ".gz")
    with open(blob, "rb") as src, gzip.open(compressed, "wb") as out:
        shutil.copyfileobj(src, out)
    return compressed


def _write_tarball(
    path: Path, image: RemoteImage, blobs: list[Path]
) -> None:
    manifest = build_archive_manifest(image)
    with tarfile.open(path, "w") as tar:
        _add_bytes(tar, MANIFEST_FILENAME, json.dumps(manifest).encode("utf-8"))
        _add_bytes(tar, image.config_digest, image.config)
        for layer, blob in zip(image.layers, blobs):
            tar.add(_ensure_gzip(blob), arcname=layer_member_name(layer.digest))


async def write_image_archive(image: RemoteImage, path: Path) -> Path:
    """Write ``image`` to ``path`` as one tarball.

    The tarball holds ``manifest.json``, the config blob stored under its
    digest (``sha256:<hex>``) and one ``<hex>.tar.gz`` member per layer in
    layer order.

    Args:
        image: Resolved image to write
        path: Output tar file; its parent directory must exist

    Returns:
        The written path

    Raises:
        BlobError: If a layer download fails or does not match its digest
        ArchiveWriteError: If the tarball or its temporary blobs cannot be written
    """
    path = Path(path)
    try:
        with tempfile.TemporaryDirectory(prefix=".blobs-", dir=path.parent) as tmp:
            blobs = []
            for layer in image.layers:
                blob = Path(tmp) / f"{layer.index}.blob"
                async with aiofiles.open(blob, "wb") as f:
                    async for chunk in layer.stream():
                        await f.write(chunk)
                blobs.append(blob)
                logger.debug("Downloaded layer %d (%s)", layer.index, layer.digest)

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _write_tarball, path, image, blobs)
    except (OSError, tarfile.TarError) as e:
        raise ArchiveWriteError(f"Failed to write image archive {path}: {e}") from e

    logger.info("Image %s written to %s", image.reference, path)
    return path


def read_archive_manifest(path: Path) -> list[dict[str, Any]]:
    """Read ``manifest.json`` from an image tarball.

    Raises:
        ExtractionError: If the tarball or its manifest cannot be read
    """
    try:
        with tarfile.open(path, "r") as tar:
            member = tar.extractfile(MANIFEST_FILENAME)
            if member is None:
                raise ExtractionError(f"{MANIFEST_FILENAME} is not a file in {path}")
            return json.loads(member.read().decode("utf-8"))
    except KeyError as e:
        raise ExtractionError(f"{MANIFEST_FILENAME} not found in {path}") from e
    except (tarfile.TarError, OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ExtractionError(f"Cannot read {MANIFEST_FILENAME} from {path}: {e}") from e
