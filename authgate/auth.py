"""
authgate.auth
~~~~~~~~~~~~~
Basic-Auth gate for the single configured user, and the 401 challenge
served to everybody else.
"""

from __future__ import annotations

import base64
import binascii
import hmac
from dataclasses import dataclass

from .config import Config, ConfigError
from .http import Headers, SimpleResponse

SCHEME_PREFIX = "Basic "


class AuthError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str


def _decode_basic(header_val: str) -> Credentials:
    if not header_val.startswith(SCHEME_PREFIX):
        raise AuthError("unsupported auth scheme")
    try:
        raw = base64.b64decode(header_val[len(SCHEME_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthError("bad base64") from e
    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthError("credentials are not utf-8") from e
    username, sep, password = decoded.partition(":")
    if not sep:
        raise AuthError("missing ':' separator")
    return Credentials(username=username, password=password)


def _same(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def authenticate(headers: Headers, cfg: Config) -> Credentials:
    """Return the caller's credentials or raise :class:`AuthError`.

    Only reads *headers*; dropping ``Authorization`` before the request
    travels further is the caller's job.
    """
    auth_hdr = headers.get("authorization")
    if auth_hdr is None:
        raise AuthError("missing Authorization")

    creds = _decode_basic(auth_hdr)

    # evaluate both so a wrong user costs the same as a wrong password
    user_ok = _same(creds.username, cfg.username)
    pass_ok = _same(creds.password, cfg.password)
    if not (user_ok and pass_ok):
        raise AuthError("bad credentials")

    return creds


def challenge_header(realm: str) -> str:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in realm):
        raise ConfigError("realm must not contain control characters")
    return f'Basic realm="{realm}", charset="UTF-8"'


def unauthorized_response(realm: str) -> SimpleResponse:
    """Build the 401 challenge; raises :class:`ConfigError` for an unusable realm."""
    value = challenge_header(realm)
    # Headers.encode() writes latin-1, so carry the UTF-8 bytes through it
    wire_value = value.encode("utf-8").decode("latin-1")
    return SimpleResponse(401, Headers([("WWW-Authenticate", wire_value)]))
