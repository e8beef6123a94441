"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from image_rootfs.core.credentials import DefaultKeychain
from image_rootfs.core.registry_client import RegistryClient
from image_rootfs.core.types import RegistryConfig
from tests.helpers import FakeRegistry


@pytest.fixture
def empty_keychain(tmp_path):
    """Keychain pointing at a config file that does not exist."""
    return DefaultKeychain(tmp_path / "docker-config" / "config.json")


@pytest_asyncio.fixture
async def fake_registry():
    """Start an in-process fake registry for the duration of a test."""
    registry = FakeRegistry()
    server = TestServer(registry.app())
    await server.start_server()
    registry.server = server
    yield registry
    await server.close()


@pytest_asyncio.fixture
async def registry_client(fake_registry, empty_keychain):
    async with RegistryClient(RegistryConfig(), keychain=empty_keychain) as client:
        yield client
