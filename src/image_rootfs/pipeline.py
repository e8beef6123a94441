"""Async functional style pull-and-assemble pipeline."""

import asyncio
import functools
import logging
from pathlib import Path

from .assembler import assemble, cleanup_target, is_directory_empty, pending_archives
from .core.reference import ImageReference
from .core.registry_client import RegistryClient
from .core.types import PullConfig
from .layers import write_layers
from .models import AssemblyResult, RemoteImage
from .registry import ImageSource, fetch_image, prepare_workdir, resolve_image
from .tar.writer import write_image_archive

logger = logging.getLogger(__name__)


def target_directory(reference: ImageReference, output_root: Path) -> Path:
    """Directory the image's root filesystem is assembled into."""
    return Path(output_root) / reference.name


async def _produce_archives(
    image: RemoteImage, target: Path, config: PullConfig
) -> list[Path]:
    if config.strategy == "archive":
        archive = target / f"{image.reference.name}.tar"
        return [await write_image_archive(image, archive)]
    return await write_layers(image, target, config.max_concurrency)


async def _pull(
    source: ImageSource,
    reference: ImageReference,
    target: Path,
    config: PullConfig,
) -> AssemblyResult:
    image = await fetch_image(source, reference, config.retry)
    sources = await _produce_archives(image, target, config)

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, functools.partial(assemble, sources, target, config.cleanup)
    )


async def pull_rootfs(
    image_name: str,
    output_root: Path | str = ".",
    config: PullConfig | None = None,
    client: ImageSource | None = None,
) -> AssemblyResult:
    """이미지를 가져와 레이어를 풀어 루트 파일시스템 디렉토리를 만듭니다.

    대상 디렉토리(`<output_root>/<이미지 이름>`)가 이미 채워져 있으면
    가져오기와 추출을 건너뛰고 정리 단계만 실행합니다.

    Args:
        image_name: 이미지 이름 (예: "redis", "ghcr.io/org/app:v1")
        output_root: 대상 디렉토리를 만들 상위 경로 (기본값: 현재 디렉토리)
        config: 파이프라인 설정 (전략, 동시성, 재시도, 정리 규칙)
        client: 이미지를 가져올 클라이언트 (기본값: 새 RegistryClient)

    Returns:
        AssemblyResult: 대상 경로, 추출 여부, 정리 결과

    Raises:
        ImageReferenceError: 이미지 이름이 잘못된 경우
        FetchError: 재시도 후에도 이미지를 가져오지 못한 경우
        LayerWriteError: 하나 이상의 레이어 저장에 실패한 경우
        ExtractionError: 아카이브 추출에 실패한 경우
        AssemblyError: 대상 디렉토리를 만들거나 읽을 수 없는 경우

    Examples:
        # 레이어별 tar 파일을 만든 뒤 ./redis 에 추출
        result = await pull_rootfs("redis")

        # 단일 tarball 전략으로 /tmp/rootfs/alpine 에 추출
        result = await pull_rootfs(
            "alpine:3.20", "/tmp/rootfs", PullConfig(strategy="archive")
        )
    """
    config = config or PullConfig()
    reference = resolve_image(image_name)
    target = prepare_workdir(target_directory(reference, Path(output_root)))

    leftovers = pending_archives(target, config.cleanup)
    if not is_directory_empty(target, ignore=leftovers):
        logger.info("Directory already assembled, skipping fetch: %s", target)
        report = cleanup_target(target, config.cleanup)
        return AssemblyResult(target=target, extracted=False, cleanup=report)

    if client is not None:
        return await _pull(client, reference, target, config)

    async with RegistryClient(config.registry) as registry_client:
        return await _pull(registry_client, reference, target, config)
