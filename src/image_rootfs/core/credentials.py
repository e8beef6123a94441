"""Ambient registry credential discovery from the Docker client config."""

import base64
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import aiohttp

logger = logging.getLogger(__name__)

_DOCKER_HUB_KEYS = ("https://index.docker.io/v1/", "index.docker.io", "docker.io")


class Anonymous:
    """No credentials; requests go out without authorization."""

    def auth(self) -> aiohttp.BasicAuth | None:
        return None

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class Basic:
    """Username/password credentials used for Basic auth and token exchange."""

    username: str
    password: str

    def auth(self) -> aiohttp.BasicAuth | None:
        return aiohttp.BasicAuth(self.username, self.password)


def docker_config_path() -> Path:
    """Location of the Docker client config, honouring ``DOCKER_CONFIG``."""
    config_dir = os.environ.get("DOCKER_CONFIG")
    if config_dir:
        return Path(config_dir) / "config.json"
    return Path.home() / ".docker" / "config.json"


def _decode_entry(entry: dict) -> Basic | None:
    if entry.get("auth"):
        try:
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
        except (TypeError, ValueError):
            return None
        username, sep, password = decoded.partition(":")
        if not sep:
            return None
        return Basic(username, password)
    if entry.get("username") and entry.get("password"):
        return Basic(entry["username"], entry["password"])
    return None


class DefaultKeychain:
    """Resolve credentials for a registry from the Docker client config.

    Any problem reading the config falls back to anonymous access.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path or docker_config_path()

    def _load_auths(self) -> dict:
        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("Ignoring unreadable docker config %s: %s", self.config_path, e)
            return {}
        auths = data.get("auths") if isinstance(data, dict) else None
        return auths if isinstance(auths, dict) else {}

    def resolve(self, registry: str) -> Basic | Anonymous:
        auths = self._load_auths()
        keys = [registry, f"https://{registry}", f"http://{registry}"]
        if registry == "docker.io":
            keys = list(_DOCKER_HUB_KEYS)
        for key in keys:
            entry = auths.get(key)
            if isinstance(entry, dict):
                creds = _decode_entry(entry)
                if creds is not None:
                    logger.debug("Using credentials from %s for %s", self.config_path, registry)
                    return creds
        return Anonymous()
