"""Test helpers: in-memory tar builders, fake layers and a fake registry."""

import io
import json
import tarfile
from typing import Optional

from aiohttp import web

from image_rootfs.core.reference import parse_reference
from image_rootfs.core.registry_client import MANIFEST_V2, OCI_INDEX
from image_rootfs.models import RemoteImage, RemoteLayer
from image_rootfs.utils.digest import calculate_digest

CONFIG_BLOB = json.dumps({"architecture": "amd64", "os": "linux"}).encode("utf-8")
LAYER_MEDIA_TYPE = "application/vnd.docker.image.rootfs.diff.tar.gzip"


def build_tar(entries, compress: bool = False) -> bytes:
    """Build a tar archive in memory.

    ``entries`` is a list of ``(name, data)`` pairs where ``data`` is bytes for
    a regular file or None for a directory. ``tarfile.TarInfo`` objects are
    added as-is (useful for symlinks and other special entries).
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz" if compress else "w") as tar:
        for entry in entries:
            if isinstance(entry, tarfile.TarInfo):
                tar.addfile(entry)
                continue
            name, data = entry
            info = tarfile.TarInfo(name)
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def symlink_entry(name: str, target: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    return info


def read_tree(root) -> dict[str, bytes]:
    """Map every regular file under ``root`` to its content."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def blob_layer(index: int, blob: bytes, fail: Optional[Exception] = None) -> RemoteLayer:
    """RemoteLayer streaming ``blob`` in small chunks, optionally failing midway."""

    async def opener():
        yield blob[: len(blob) // 2]
        if fail is not None:
            raise fail
        yield blob[len(blob) // 2 :]

    return RemoteLayer(
        index=index,
        digest=calculate_digest(blob),
        size=len(blob),
        media_type=LAYER_MEDIA_TYPE,
        opener=opener,
    )


def remote_image(layers: list[RemoteLayer], name: str = "demo") -> RemoteImage:
    manifest = {
        "schemaVersion": 2,
        "mediaType": MANIFEST_V2,
        "config": {"digest": calculate_digest(CONFIG_BLOB), "size": len(CONFIG_BLOB)},
        "layers": [
            {"digest": layer.digest, "size": layer.size, "mediaType": layer.media_type}
            for layer in layers
        ],
    }
    return RemoteImage(
        reference=parse_reference(name),
        manifest=manifest,
        manifest_digest=calculate_digest(json.dumps(manifest).encode("utf-8")),
        config=CONFIG_BLOB,
        layers=layers,
    )


class FakeRegistry:
    """Minimal Registry API v2 server serving manifests and blobs from memory."""

    TOKEN = "test-token"

    def __init__(self) -> None:
        self.manifests: dict[tuple[str, str], tuple[str, bytes]] = {}
        self.blobs: dict[str, bytes] = {}
        self.require_token = False
        self.token_requests: list[web.Request] = []
        self.manifest_requests = 0
        self.server = None

    @property
    def host(self) -> str:
        return f"127.0.0.1:{self.server.port}"

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/token", self._token)
        app.router.add_get("/v2/{repo:.+}/manifests/{ref}", self._manifest)
        app.router.add_get("/v2/{repo:.+}/blobs/{digest}", self._blob)
        return app

    def publish(
        self, repository: str, tag: str, layer_blobs: list[bytes], config: bytes = CONFIG_BLOB
    ) -> str:
        """Store an image and return its manifest digest."""
        self.blobs[calculate_digest(config)] = config
        layers = []
        for blob in layer_blobs:
            digest = calculate_digest(blob)
            self.blobs[digest] = blob
            layers.append(
                {"mediaType": LAYER_MEDIA_TYPE, "size": len(blob), "digest": digest}
            )
        manifest = {
            "schemaVersion": 2,
            "mediaType": MANIFEST_V2,
            "config": {
                "mediaType": "application/vnd.docker.container.image.v1+json",
                "size": len(config),
                "digest": calculate_digest(config),
            },
            "layers": layers,
        }
        return self._store_manifest(repository, tag, MANIFEST_V2, manifest)

    def publish_index(
        self, repository: str, tag: str, platforms: dict[tuple[str, str], str]
    ) -> str:
        index = {
            "schemaVersion": 2,
            "mediaType": OCI_INDEX,
            "manifests": [
                {
                    "mediaType": MANIFEST_V2,
                    "digest": digest,
                    "size": 0,
                    "platform": {"os": os_name, "architecture": arch},
                }
                for (os_name, arch), digest in platforms.items()
            ],
        }
        return self._store_manifest(repository, tag, OCI_INDEX, index)

    def _store_manifest(self, repository: str, tag: str, media_type: str, manifest: dict) -> str:
        body = json.dumps(manifest).encode("utf-8")
        digest = calculate_digest(body)
        self.manifests[(repository, tag)] = (media_type, body)
        self.manifests[(repository, digest)] = (media_type, body)
        return digest

    def _unauthorized(self, request: web.Request) -> Optional[web.Response]:
        if not self.require_token:
            return None
        if request.headers.get("Authorization") == f"Bearer {self.TOKEN}":
            return None
        realm = f"http://{self.host}/token"
        return web.Response(
            status=401,
            headers={
                "WWW-Authenticate": f'Bearer realm="{realm}",service="fake-registry"'
            },
        )

    async def _token(self, request: web.Request) -> web.Response:
        self.token_requests.append(request)
        return web.json_response({"token": self.TOKEN})

    async def _manifest(self, request: web.Request) -> web.Response:
        denied = self._unauthorized(request)
        if denied is not None:
            return denied
        self.manifest_requests += 1
        key = (request.match_info["repo"], request.match_info["ref"])
        if key not in self.manifests:
            return web.Response(status=404)
        media_type, body = self.manifests[key]
        return web.Response(
            body=body,
            headers={
                "Content-Type": media_type,
                "Docker-Content-Digest": calculate_digest(body),
            },
        )

    async def _blob(self, request: web.Request) -> web.Response:
        denied = self._unauthorized(request)
        if denied is not None:
            return denied
        digest = request.match_info["digest"]
        if digest not in self.blobs:
            return web.Response(status=404)
        return web.Response(body=self.blobs[digest])
