"""
authgate.client
~~~~~~~~~~~~~~~
Upstream side of the proxy: one connection, one exchange per forwarded
request.  The connect, the head write and the wait for the response head
(counted from the end of the client upload) are bounded by the configured
timeout; the body that follows is relayed as raw bytes.
"""

from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass
from typing import Optional

from .config import Origin
from .http import ProxyError, Request, pipe_stream, read_response_head, relay_body


class UpstreamError(Exception):
    pass


def describe(exc: BaseException) -> str:
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


@dataclass
class UpstreamResponse:
    status: int
    head: bytes
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    body_task: Optional[asyncio.Task] = None

    async def write_to(self, dst: asyncio.StreamWriter) -> int:
        dst.write(self.head)
        await dst.drain()
        return len(self.head) + await pipe_stream(self.reader, dst)

    async def close(self) -> None:
        _settle(self.body_task)
        await _close(self.writer)


class UpstreamClient:
    """Sends requests to the single configured origin."""

    def __init__(self, origin: Origin, timeout: float) -> None:
        self.origin = origin
        self.timeout = timeout
        self._ssl = ssl.create_default_context() if origin.scheme == "https" else None

    async def send(
        self, request: Request, body: Optional[asyncio.StreamReader] = None
    ) -> UpstreamResponse:
        """Perform one exchange; raises :class:`UpstreamError` on any transport failure."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.origin.host, self.origin.port, ssl=self._ssl
                ),
                self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"connect to {self.origin} failed: {describe(e)}") from e

        body_task = None
        head_task = None
        try:
            writer.write(request.head_bytes())
            await asyncio.wait_for(writer.drain(), self.timeout)
            head_task = asyncio.ensure_future(read_response_head(reader))
            if body is not None:
                # runs alongside the head read so interim 100 responses get through
                body_task = asyncio.create_task(
                    relay_body(body, writer, request.headers)
                )
                # the upstream clock starts once the client has finished uploading
                await asyncio.wait(
                    {head_task, body_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if not head_task.done():
                    await body_task
            status, head = await asyncio.wait_for(head_task, self.timeout)
        except (
            OSError,
            ValueError,
            asyncio.TimeoutError,
            asyncio.IncompleteReadError,
            ProxyError,
        ) as e:
            _settle(head_task)
            _settle(body_task)
            await _close(writer)
            raise UpstreamError(describe(e)) from e
        except BaseException:
            _settle(head_task)
            _settle(body_task)
            await _close(writer)
            raise

        return UpstreamResponse(
            status=status, head=head, reader=reader, writer=writer, body_task=body_task
        )


def _settle(task: Optional[asyncio.Future]) -> None:
    if task is None:
        return
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        task.exception()  # mark it retrieved


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (OSError, ssl.SSLError):
        pass
