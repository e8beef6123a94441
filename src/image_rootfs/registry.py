"""Image resolution and fetching with bounded retry."""

import logging
from pathlib import Path
from typing import Protocol

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .core.reference import ImageReference, parse_reference
from .core.types import RetryPolicy
from .exceptions import AssemblyError, FetchError, ImageReferenceError
from .models import RemoteImage

logger = logging.getLogger(__name__)


class ImageSource(Protocol):
    """Anything that can resolve a reference into a :class:`RemoteImage`."""

    async def fetch_image(self, reference: ImageReference) -> RemoteImage: ...


def resolve_image(name: str) -> ImageReference:
    """이미지 이름을 정규화된 참조로 변환합니다.

    Args:
        name: 이미지 이름 (예: "redis", "ghcr.io/org/app:v1")

    Returns:
        ImageReference: 레지스트리/저장소/태그가 채워진 참조

    Raises:
        ImageReferenceError: 이름을 해석할 수 없는 경우

    Examples:
        ref = resolve_image("redis")
        print(ref)  # docker.io/library/redis:latest
    """
    return parse_reference(name)


def _log_failed_attempt(reference: ImageReference):
    def before_sleep(retry_state: RetryCallState) -> None:
        logger.warning(
            "Attempt %d: failed to fetch image %s: %s",
            retry_state.attempt_number,
            reference,
            retry_state.outcome.exception(),
        )

    return before_sleep


async def fetch_image(
    source: ImageSource,
    reference: ImageReference,
    retry: RetryPolicy | None = None,
) -> RemoteImage:
    """레지스트리에서 이미지를 가져옵니다. 실패 시 고정 간격으로 재시도합니다.

    Args:
        source: 이미지를 가져올 클라이언트 (RegistryClient)
        reference: 가져올 이미지 참조
        retry: 재시도 정책 (기본값: 3회, 2초 간격)

    Returns:
        RemoteImage: 매니페스트, 설정, 레이어 목록

    Raises:
        FetchError: 모든 시도가 실패한 경우
    """
    retry = retry or RetryPolicy()
    attempts = 0
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retry.attempts),
        wait=wait_fixed(retry.delay),
        retry=retry_if_not_exception_type(ImageReferenceError),
        before_sleep=_log_failed_attempt(reference),
    )
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                image = await source.fetch_image(reference)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(
            "Attempt %d: failed to fetch image %s: %s", attempts, reference, last_error
        )
        raise FetchError(str(reference), attempts, last_error) from last_error

    if attempts > 1:
        logger.info("Fetched %s after %d attempts", reference, attempts)
    return image


def prepare_workdir(path: Path) -> Path:
    """Create the image working directory if it does not exist.

    Raises:
        AssemblyError: If the directory cannot be created
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise AssemblyError(f"Failed to create directory {path}: {e}") from e
    if not path.is_dir():
        raise AssemblyError(f"{path} exists and is not a directory")
    return path
