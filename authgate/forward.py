"""
authgate.forward
~~~~~~~~~~~~~~~~
Rewrites an authorized request onto the configured origin and relays it.
The host the client asked for is never consulted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from urllib.parse import urlsplit

from .client import UpstreamClient, UpstreamError, UpstreamResponse
from .config import Origin
from .http import Headers, ProxyError, Request, SimpleResponse

UNAVAILABLE_BODY = b"503 Service Unavailable"

# hop-by-hop fields are meaningful on the inbound connection only
_HOP_BY_HOP = {
    "authorization",
    "connection",
    "keep-alive",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "upgrade",
}
_FRAMING = {"content-length", "host", "transfer-encoding"}


def rewrite_target(target: str, origin: Origin) -> Tuple[str, str]:
    """Return ``(request_target, absolute_uri)`` on *origin* for *target*."""
    if target.startswith("/"):
        path_and_query = target
    elif "://" in target:
        parts = urlsplit(target)
        path_and_query = parts.path or "/"
        if parts.query:
            path_and_query += "?" + parts.query
        if parts.fragment:
            path_and_query += "#" + parts.fragment
    elif target == "*":
        return target, f"{origin.scheme}://{origin.authority}"
    else:
        raise ProxyError(400, "Bad Request: unsupported request-target")
    return path_and_query, f"{origin.scheme}://{origin.authority}{path_and_query}"


def _connection_tokens(headers: Headers) -> set:
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def outbound_request(request: Request, origin: Origin) -> Tuple[Request, str]:
    """Build the request sent upstream and its absolute URI."""
    path_and_query, uri = rewrite_target(request.target, origin)

    drop = (_HOP_BY_HOP | _connection_tokens(request.headers)) - _FRAMING
    headers = Headers(
        (k, v) for k, v in request.headers if k.lower() not in drop
    )
    headers.set("Host", origin.authority)
    headers.set("Connection", "close")

    return (
        Request(
            method=request.method,
            target=path_and_query,
            version=request.version,
            headers=headers,
        ),
        uri,
    )


def service_unavailable() -> SimpleResponse:
    return SimpleResponse(503, body=UNAVAILABLE_BODY)


@dataclass
class Forwarded:
    response: Union[UpstreamResponse, SimpleResponse]
    uri: str
    error: Optional[str] = None


class Forwarder:
    def __init__(self, origin: Origin, client: UpstreamClient) -> None:
        self.origin = origin
        self.client = client

    async def forward(
        self, request: Request, body: Optional[asyncio.StreamReader] = None
    ) -> Forwarded:
        """Send *request* upstream exactly once.

        *request* must already be stripped of ``Authorization``.  Transport
        failures come back as a synthetic 503 with the failure description
        in ``error``; they are never retried.
        """
        outbound, uri = outbound_request(request, self.origin)
        try:
            response = await self.client.send(outbound, body)
        except UpstreamError as e:
            return Forwarded(service_unavailable(), uri, str(e))
        return Forwarded(response, uri)
