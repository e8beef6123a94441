"""Docker Registry API v2 async pull client."""

import asyncio
import functools
import json
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ..exceptions import (
    AuthenticationError,
    BlobError,
    ManifestError,
    RegistryError,
)
from ..models import RemoteImage, RemoteLayer
from ..utils.digest import (
    DigestVerifier,
    calculate_digest,
    validate_digest,
    verify_digest,
)
from .credentials import Anonymous, Basic, DefaultKeychain
from .reference import ImageReference
from .session import create_session, parse_json_response
from .types import RegistryConfig

logger = logging.getLogger(__name__)

MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

IMAGE_MANIFEST_TYPES = (MANIFEST_V2, OCI_MANIFEST)
INDEX_TYPES = (MANIFEST_LIST_V2, OCI_INDEX)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> tuple[str, Dict[str, str]]:
    """Split a ``WWW-Authenticate`` header into its scheme and parameters."""
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryClient:
    """Docker Registry API v2 async client for pulling images.

    Anonymous and Basic credentials are supported, as is the Bearer token
    handshake used by Docker Hub and most hosted registries.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        keychain: Optional[DefaultKeychain] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            config: Registry transport configuration
            keychain: Credential source, defaults to the Docker client config
            session: Existing session to reuse; it is not closed by this client
        """
        self.config = config or RegistryConfig()
        self.keychain = keychain or DefaultKeychain()
        self.session = session
        self._owns_session = session is None
        self._authorizations: Dict[tuple[str, str], str] = {}

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        if not self.session:
            self.session = await create_session(self.config.timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    def _url(self, reference: ImageReference, suffix: str) -> str:
        base = self.config.base_url(reference.registry)
        return f"{base}/v2/{reference.repository}/{suffix}"

    async def _authorize(self, reference: ImageReference, challenge: str) -> str:
        """Answer an authentication challenge with an Authorization header value.

        Raises:
            AuthenticationError: If the challenge cannot be satisfied
        """
        scheme, params = parse_challenge(challenge)
        creds = self.keychain.resolve(reference.registry)

        if scheme == "basic":
            if not isinstance(creds, Basic):
                raise AuthenticationError(
                    f"Registry {reference.registry} requires credentials"
                )
            return creds.auth().encode()

        if scheme != "bearer" or "realm" not in params:
            raise AuthenticationError(f"Unsupported auth challenge: {challenge!r}")

        query = {"scope": params.get("scope") or reference.scope("pull")}
        if "service" in params:
            query["service"] = params["service"]

        try:
            async with self.session.get(
                params["realm"], params=query, auth=creds.auth()
            ) as resp:
                if resp.status != 200:
                    raise AuthenticationError(
                        f"Token request to {params['realm']} failed: HTTP {resp.status}"
                    )
                data = await parse_json_response(resp, AuthenticationError)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthenticationError(f"Token request failed: {e}") from e

        token = data.get("token") or data.get("access_token")
        if not token:
            raise AuthenticationError("Token response did not contain a token")
        logger.debug(
            "Obtained %s token for %s",
            "anonymous" if isinstance(creds, Anonymous) else "authenticated",
            reference.repository,
        )
        return f"Bearer {token}"

    @asynccontextmanager
    async def _get(
        self, reference: ImageReference, suffix: str, headers: Optional[Dict] = None
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """GET a repository resource, answering one auth challenge if needed."""
        url = self._url(reference, suffix)
        key = (reference.registry, reference.repository)
        headers = dict(headers or {})
        if key in self._authorizations:
            headers["Authorization"] = self._authorizations[key]

        resp = await self.session.get(url, headers=headers)
        try:
            if resp.status == 401:
                challenge = resp.headers.get("WWW-Authenticate", "")
                resp.release()
                self._authorizations[key] = await self._authorize(reference, challenge)
                headers["Authorization"] = self._authorizations[key]
                resp = await self.session.get(url, headers=headers)
            yield resp
        finally:
            resp.release()

    async def get_manifest(
        self, reference: ImageReference, identifier: Optional[str] = None
    ) -> tuple[Dict[str, Any], str]:
        """Retrieve an image manifest, resolving indexes to the configured platform.

        Args:
            reference: Image reference
            identifier: Tag or digest overriding the reference's own

        Returns:
            Tuple of (manifest dictionary, manifest digest)

        Raises:
            ManifestError: If retrieval fails or no usable manifest exists
        """
        identifier = identifier or reference.identifier
        accept = ", ".join(IMAGE_MANIFEST_TYPES + INDEX_TYPES)
        try:
            async with self._get(
                reference, f"manifests/{identifier}", {"Accept": accept}
            ) as resp:
                if resp.status == 404:
                    raise ManifestError(f"Manifest not found: {reference}")
                if resp.status != 200:
                    raise ManifestError(
                        f"Failed to get manifest {reference}: HTTP {resp.status}"
                    )
                body = await resp.read()
                content_type = resp.headers.get("Content-Type", "").split(";")[0]
                digest = resp.headers.get("Docker-Content-Digest") or calculate_digest(
                    body
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ManifestError(f"Failed to get manifest: {e}") from e

        try:
            manifest = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ManifestError(f"Invalid manifest JSON for {reference}: {e}") from e

        if validate_digest(identifier) and not verify_digest(body, identifier):
            raise ManifestError(f"Manifest for {reference} does not match {identifier}")

        media_type = manifest.get("mediaType") or content_type
        if manifest.get("schemaVersion") == 1:
            raise ManifestError(f"Schema 1 manifests are not supported: {reference}")

        if media_type in INDEX_TYPES or "manifests" in manifest:
            child = self._select_platform(reference, manifest)
            return await self.get_manifest(reference, child)

        if "layers" not in manifest or "config" not in manifest:
            raise ManifestError(f"Unsupported manifest type {media_type!r}")
        return manifest, digest

    def _select_platform(self, reference: ImageReference, index: Dict) -> str:
        platform = self.config.platform
        for entry in index.get("manifests", []):
            if platform.matches(entry.get("platform", {})):
                logger.debug("Selected %s manifest %s", platform, entry["digest"])
                return entry["digest"]
        raise ManifestError(f"No manifest for platform {platform} in {reference}")

    async def get_blob(
        self, reference: ImageReference, digest: str, size: Optional[int] = None
    ) -> bytes:
        """Download a whole blob and verify its digest.

        Raises:
            BlobError: If the download fails or the digest or size does not match
        """
        chunks = [chunk async for chunk in self.stream_blob(reference, digest, size)]
        return b"".join(chunks)

    async def stream_blob(
        self, reference: ImageReference, digest: str, size: Optional[int] = None
    ) -> AsyncIterator[bytes]:
        """Stream a blob in chunks, verifying its digest once fully read.

        Args:
            reference: Image reference owning the blob
            digest: Expected blob digest
            size: Expected blob size from the manifest, checked when given

        Yields:
            Chunks of blob data

        Raises:
            BlobError: If the download fails or the digest or size does not match
        """
        if not validate_digest(digest):
            raise BlobError(f"Invalid digest format: {digest}")
        verifier = DigestVerifier(digest)
        try:
            async with self._get(reference, f"blobs/{digest}") as resp:
                if resp.status != 200:
                    raise BlobError(f"Failed to get blob {digest}: HTTP {resp.status}")
                async for chunk in resp.content.iter_chunked(self.config.chunk_size):
                    verifier.update(chunk)
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlobError(f"Failed to download blob {digest}: {e}") from e
        verifier.verify()
        if size is not None and verifier.size != size:
            raise BlobError(
                f"Size mismatch for blob {digest}: expected {size}, got {verifier.size}"
            )

    async def fetch_image(self, reference: ImageReference) -> RemoteImage:
        """Resolve a reference into its manifest, config and ordered layers.

        Raises:
            RegistryError: If any registry request fails
        """
        if not self.session:
            raise RegistryError("Client session is not open")

        manifest, manifest_digest = await self.get_manifest(reference)
        config = await self.get_blob(
            reference, manifest["config"]["digest"], manifest["config"].get("size")
        )

        layers = [
            RemoteLayer(
                index=i,
                digest=layer["digest"],
                size=layer.get("size", 0),
                media_type=layer.get("mediaType", ""),
                opener=functools.partial(
                    self.stream_blob, reference, layer["digest"], layer.get("size")
                ),
            )
            for i, layer in enumerate(manifest["layers"])
        ]
        logger.info(
            "Resolved %s (%s) with %d layer(s)", reference, manifest_digest, len(layers)
        )
        return RemoteImage(
            reference=reference,
            manifest=manifest,
            manifest_digest=manifest_digest,
            config=config,
            layers=layers,
        )
