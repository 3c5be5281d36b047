"""
authgate.config
~~~~~~~~~~~~~~~
Immutable process-wide settings.  Built once at startup from command line
overrides, the environment and an optional ``.env`` file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

DEFAULT_PORTS = {"http": 80, "https": 443}


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Origin:
    scheme: str
    host: str
    port: int
    authority: str

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}"


@dataclass(frozen=True)
class Config:
    upstream: Origin
    username: str
    password: str
    realm: str
    listen_host: str = "0.0.0.0"
    listen_port: int = 3000
    upstream_timeout: float = 30.0
    log_path: str = "authgate.log"


def parse_origin(raw: str) -> Origin:
    """Parse ``http://host:port/`` (scheme optional, path ignored)."""
    raw = raw.strip()
    if not raw:
        raise ConfigError("upstream origin is empty")
    if "://" not in raw:
        raw = "http://" + raw

    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ConfigError(f"unsupported upstream scheme {parts.scheme!r}")
    if parts.username is not None or parts.password is not None:
        raise ConfigError("upstream origin must not embed credentials")
    if not parts.hostname:
        raise ConfigError(f"upstream origin {raw!r} has no authority")
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"upstream origin {raw!r}: {e}") from e

    return Origin(
        scheme=scheme,
        host=parts.hostname,
        port=port or DEFAULT_PORTS[scheme],
        authority=parts.netloc,
    )


def load_config(overrides: Optional[Mapping[str, Optional[str]]] = None) -> Config:
    load_dotenv(override=True)
    overrides = overrides or {}

    def _get(key: str, default: Optional[str] = None) -> Optional[str]:
        val = overrides.get(key)
        if val is not None:
            return val
        return os.getenv(f"AUTHGATE_{key.upper()}", default)

    def _required(key: str) -> str:
        val = _get(key)
        if val is None:
            raise ConfigError(
                f"missing --{key} (or AUTHGATE_{key.upper()} in the environment)"
            )
        return val

    upstream = parse_origin(_required("proxy"))
    username = _required("user")
    password = _required("pass")
    realm = _required("realm")

    # a colon in the user-id can never survive the split on the first ':'
    if ":" in username:
        raise ConfigError("username must not contain ':'")

    try:
        listen_port = int(_get("listen_port", "3000"))
    except ValueError:
        raise ConfigError("listen port must be an integer") from None
    if not 0 <= listen_port <= 65535:
        raise ConfigError(f"listen port {listen_port} out of range")

    try:
        upstream_timeout = float(_get("upstream_timeout", "30"))
    except ValueError:
        raise ConfigError("upstream timeout must be a number of seconds") from None
    if not upstream_timeout > 0:
        raise ConfigError("upstream timeout must be positive")

    return Config(
        upstream=upstream,
        username=username,
        password=password,
        realm=realm,
        listen_host=_get("listen_host", "0.0.0.0"),
        listen_port=listen_port,
        upstream_timeout=upstream_timeout,
        log_path=_get("log_path", "authgate.log"),
    )
