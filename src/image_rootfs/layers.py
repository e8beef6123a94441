"""Concurrent persistence of image layers as local tar files."""

import asyncio
import gzip
import logging
import tarfile
import zlib
from pathlib import Path

import aiofiles

from .exceptions import ExtractionError, LayerWriteError
from .models import RemoteImage, RemoteLayer

logger = logging.getLogger(__name__)

LAYER_FILENAME = "layer-{index}.tar"


def layer_path(workdir: Path, index: int) -> Path:
    """Deterministic location of layer ``index`` inside ``workdir``."""
    return workdir / LAYER_FILENAME.format(index=index)


def _rewrite_layer(blob_path: Path, dest: Path) -> int:
    """Copy every entry of a layer blob into a fresh, uncompressed tar file.

    The blob may be gzip-compressed or plain; headers and contents are
    written out unchanged.

    Returns:
        Number of entries written
    """
    count = 0
    try:
        with tarfile.open(blob_path, "r:*") as src, tarfile.open(
            dest, "w", format=tarfile.PAX_FORMAT
        ) as out:
            for member in src:
                fileobj = src.extractfile(member) if member.isreg() else None
                out.addfile(member, fileobj)
                count += 1
    except (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile) as e:
        raise ExtractionError(f"Layer blob {blob_path.name} is not a tar stream: {e}") from e
    return count


async def _write_layer(
    layer: RemoteLayer, workdir: Path, semaphore: asyncio.Semaphore
) -> Path:
    dest = layer_path(workdir, layer.index)
    blob = dest.with_name(dest.name + ".blob")

    async with semaphore:
        try:
            async with aiofiles.open(blob, "wb") as f:
                async for chunk in layer.stream():
                    await f.write(chunk)

            loop = asyncio.get_running_loop()
            entries = await loop.run_in_executor(None, _rewrite_layer, blob, dest)
        finally:
            blob.unlink(missing_ok=True)

    logger.info("Layer %d written to %s (%d entries)", layer.index, dest, entries)
    return dest


async def write_layers(
    image: RemoteImage, workdir: Path, max_concurrency: int = 4
) -> list[Path]:
    """Persist every layer of ``image`` as ``workdir/layer-<i>.tar``.

    At most ``max_concurrency`` layers are downloaded at once. Every layer
    runs to completion even when a sibling fails; files written by layers
    that succeeded are left in place.

    Args:
        image: Resolved image whose layers are written
        workdir: Existing directory receiving the tar files
        max_concurrency: Maximum number of layers processed concurrently

    Returns:
        Paths of the written tar files, in layer order

    Raises:
        LayerWriteError: If any layer failed, listing every failure
    """
    semaphore = asyncio.Semaphore(max_concurrency)
    tasks = [_write_layer(layer, workdir, semaphore) for layer in image.layers]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    paths: list[Path] = []
    failures: list[tuple[int, BaseException]] = []
    for layer, result in zip(image.layers, results):
        if isinstance(result, Exception):
            logger.error("Layer %d failed: %s", layer.index, result)
            failures.append((layer.index, result))
        elif isinstance(result, BaseException):
            raise result
        else:
            paths.append(result)

    if failures:
        raise LayerWriteError(failures)
    return paths
