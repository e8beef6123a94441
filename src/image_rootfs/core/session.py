"""aiohttp session helpers."""

import json
from typing import Any

import aiohttp

from .. import __version__
from ..exceptions import RegistryError

USER_AGENT = f"image-rootfs/{__version__}"


async def create_session(timeout: int = 300) -> aiohttp.ClientSession:
    """Create a client session with the project's user agent and timeout."""
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers={"User-Agent": USER_AGENT},
    )


async def parse_json_response(
    resp: aiohttp.ClientResponse, error_cls: type[RegistryError] = RegistryError
) -> Any:
    """Read a response body as JSON regardless of its declared content type.

    Raises:
        error_cls: If the body is not valid JSON
    """
    body = await resp.read()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise error_cls(f"Invalid JSON from {resp.url}: {e}") from e
