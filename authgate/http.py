"""
authgate.http
~~~~~~~~~~~~~
HTTP/1.x wire helpers shared by the listener and the upstream client:
head parsing, an ordered header multi-map, body framing and raw relaying.

Header text is decoded as ISO-8859-1 so every byte survives a round trip.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple

CRLF = b"\r\n"
BUFFER = 65_536
MAX_HEAD = 64 * 1024

REASONS = {
    200: "OK",
    400: "Bad Request",
    401: "Unauthorized",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class ProxyError(Exception):
    def __init__(self, status: int, msg: str):
        self.status = status
        self.msg = msg
        super().__init__(f"{status} {msg}")


class Headers:
    """Ordered, case-insensitive multi-map of header fields."""

    def __init__(self, items: Iterable[Tuple[str, str]] = ()) -> None:
        self._items: List[Tuple[str, str]] = list(items)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        name = name.lower()
        for k, v in self._items:
            if k.lower() == name:
                return v
        return default

    def remove(self, name: str) -> Optional[str]:
        """Drop every field called *name*; return the first value seen."""
        name = name.lower()
        first = None
        kept = []
        for k, v in self._items:
            if k.lower() == name:
                if first is None:
                    first = v
            else:
                kept.append((k, v))
        self._items = kept
        return first

    def add(self, name: str, value: str) -> None:
        self._items.append((name, value))

    def set(self, name: str, value: str) -> None:
        self.remove(name)
        self._items.append((name, value))

    def encode(self) -> bytes:
        return b"".join(
            f"{k}: {v}".encode("latin-1") + CRLF for k, v in self._items
        )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


@dataclass
class Request:
    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: Headers = field(default_factory=Headers)

    def head_bytes(self) -> bytes:
        line = f"{self.method} {self.target} {self.version}".encode("latin-1")
        return line + CRLF + self.headers.encode() + CRLF


@dataclass
class SimpleResponse:
    """A response fully built by the proxy itself."""

    status: int
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""

    def head_bytes(self) -> bytes:
        reason = REASONS.get(self.status, "Error")
        head = f"HTTP/1.1 {self.status} {reason}".encode("latin-1") + CRLF
        head += self.headers.encode()
        head += f"Content-Length: {len(self.body)}".encode() + CRLF
        head += b"Connection: close" + CRLF + CRLF
        return head

    async def write_to(self, writer: asyncio.StreamWriter) -> int:
        data = self.head_bytes() + self.body
        writer.write(data)
        await writer.drain()
        return len(data)

    async def close(self) -> None:
        pass


async def _read_head(
    reader: asyncio.StreamReader, status: int = 400, prefix: str = "Bad Request: "
) -> List[bytes]:
    head = b""
    while True:
        try:
            line = await reader.readline()
        except ValueError:
            raise ProxyError(status, prefix + "header line too long") from None
        if not line:
            raise ProxyError(status, prefix + "EOF before headers complete")
        head += line
        if len(head) > MAX_HEAD:
            raise ProxyError(status, prefix + "head too large")
        if line == CRLF:
            break

    return head.split(CRLF)[:-2]


def _parse_headers(lines: List[bytes]) -> Headers:
    hdrs = Headers()
    for raw in lines:
        if b":" not in raw:
            raise ProxyError(400, "Bad Request: malformed header line")
        k, v = raw.split(b":", 1)
        name = k.decode("latin-1")
        if not name or name != name.strip():
            raise ProxyError(400, "Bad Request: malformed header name")
        hdrs.add(name, v.decode("latin-1").strip())
    return hdrs


def parse_request_line(line: bytes) -> Tuple[str, str, str]:
    parts = line.decode("latin-1").strip().split()
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise ProxyError(400, "Bad Request: malformed request-line")
    method, target, version = parts
    return method, target, version


async def read_request(reader: asyncio.StreamReader) -> Request:
    lines = await _read_head(reader)
    if not lines:
        raise ProxyError(400, "Bad Request: empty head")
    method, target, version = parse_request_line(lines[0])
    headers = _parse_headers(lines[1:])
    body_length(headers)  # reject unusable framing before anything is forwarded
    return Request(method=method, target=target, version=version, headers=headers)


async def read_response_head(reader: asyncio.StreamReader) -> Tuple[int, bytes]:
    """Return the status code and the raw head (terminating CRLF included)."""
    lines = await _read_head(reader, 502, "upstream ")
    parts = lines[0].split(None, 2) if lines else []
    if len(parts) < 2 or not parts[0].startswith(b"HTTP/"):
        raise ProxyError(502, "malformed upstream status-line")
    try:
        status = int(parts[1])
    except ValueError:
        raise ProxyError(502, "malformed upstream status code") from None
    return status, CRLF.join(lines) + CRLF + CRLF


def body_length(headers: Headers) -> Optional[int]:
    """Content length of a request body, ``None`` for chunked framing."""
    te = headers.get("transfer-encoding")
    if te is not None:
        if te.lower().split(",")[-1].strip() != "chunked":
            raise ProxyError(400, "Bad Request: unsupported transfer-encoding")
        return None
    cl = headers.get("content-length")
    if cl is None:
        return 0
    if not (cl.isascii() and cl.isdigit()):
        raise ProxyError(400, "Bad Request: invalid content-length")
    return int(cl)


async def relay_body(
    src: asyncio.StreamReader, dst: asyncio.StreamWriter, headers: Headers
) -> int:
    """Copy one request body from *src* to *dst* keeping its framing."""
    length = body_length(headers)
    if length is None:
        return await _relay_chunked(src, dst)

    sent = 0
    while sent < length:
        chunk = await src.readexactly(min(BUFFER, length - sent))
        dst.write(chunk)
        await dst.drain()
        sent += len(chunk)
    return sent


async def _relay_chunked(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> int:
    sent = 0
    while True:
        size_line = await src.readline()
        if not size_line.endswith(CRLF):
            raise asyncio.IncompleteReadError(size_line, None)
        try:
            size = int(size_line.split(b";", 1)[0].strip(), 16)
        except ValueError:
            raise ProxyError(400, "Bad Request: malformed chunk size") from None
        dst.write(size_line)
        sent += len(size_line)

        if size == 0:
            # trailer section runs until an empty line
            while True:
                line = await src.readline()
                if not line.endswith(CRLF):
                    raise asyncio.IncompleteReadError(line, None)
                dst.write(line)
                sent += len(line)
                if line == CRLF:
                    break
            await dst.drain()
            return sent

        data = await src.readexactly(size + 2)
        dst.write(data)
        await dst.drain()
        sent += len(data)


async def pipe_stream(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> int:
    total = 0
    while not src.at_eof():
        chunk = await src.read(BUFFER)
        if not chunk:
            break
        dst.write(chunk)
        await dst.drain()
        total += len(chunk)
    return total
