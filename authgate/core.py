"""
authgate.core
~~~~~~~~~~~~~
Non-blocking reverse proxy that puts Basic-Auth in front of one upstream.

Per connection: read one request head, authenticate it, then either answer
with the 401 challenge or forward to the configured origin and relay the
answer (or a 503 when the origin cannot be reached).
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from .auth import AuthError, authenticate, unauthorized_response
from .client import UpstreamClient, describe
from .config import Config
from .forward import Forwarder
from .http import BUFFER, ProxyError, Request, SimpleResponse, read_request
from .logger import ProxyLogger

LINGER_SECONDS = 5.0
DISCARD_LIMIT = 64 * 1024 * 1024


def run_proxy(config: Config) -> None:
    proxy = ProxyServer(config)
    try:
        asyncio.run(proxy.serve_forever())
    except KeyboardInterrupt:
        print("\n▸ Proxy shut down.")
    except OSError as e:
        proxy.logger.server_error(describe(e))
        raise SystemExit(1) from e


class ProxyServer:
    def __init__(
        self,
        cfg: Config,
        logger: Optional[ProxyLogger] = None,
        forwarder: Optional[Forwarder] = None,
    ) -> None:
        self.cfg = cfg
        # built up front: a realm that cannot be sent stops startup here
        self.unauthorized = unauthorized_response(cfg.realm)
        self.logger = logger or ProxyLogger(cfg.log_path)
        self.forwarder = forwarder or Forwarder(
            cfg.upstream, UpstreamClient(cfg.upstream, cfg.upstream_timeout)
        )
        self.server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> asyncio.AbstractServer:
        self.server = await asyncio.start_server(
            self._handle_client,
            host=self.cfg.listen_host,
            port=self.cfg.listen_port,
        )
        bind_str = ", ".join(str(s.getsockname()) for s in self.server.sockets)
        self.logger.listening(bind_str, str(self.cfg.upstream))
        return self.server

    async def serve_forever(self) -> None:
        server = await self.start()
        async with server:
            await server.serve_forever()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_ip = peer[0] if peer else "-"

        try:
            try:
                request = await read_request(reader)
            except ProxyError as e:
                self.logger.bad_request(peer_ip, e.msg)
                await _reply_quietly(writer, SimpleResponse(e.status))
                return
            except OSError:
                return

            await self.handle(request, reader, writer, peer_ip)
        except Exception as e:
            self.logger.server_error(describe(e))
            await _reply_quietly(writer, SimpleResponse(500))
        finally:
            await _linger(reader, writer)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def handle(
        self,
        request: Request,
        reader: Optional[asyncio.StreamReader],
        writer: asyncio.StreamWriter,
        peer_ip: str = "-",
    ) -> int:
        """Run one request through the gate; returns the status sent."""
        start_ts = time.time()
        uri = request.target

        try:
            authenticate(request.headers, self.cfg)
        except AuthError as exc:
            request.headers.remove("authorization")
            sent = await _reply_quietly(writer, self.unauthorized)
            self.logger.request(
                peer_ip, request.method, uri,
                authorized=False,
                status=401,
                total_bytes=sent,
                duration_ms=_ms_since(start_ts),
                reason=str(exc),
            )
            return 401

        request.headers.remove("authorization")

        try:
            result = await self.forwarder.forward(request, reader)
        except ProxyError as e:
            sent = await _reply_quietly(writer, SimpleResponse(e.status))
            self.logger.request(
                peer_ip, request.method, uri,
                authorized=True,
                status=e.status,
                total_bytes=sent,
                duration_ms=_ms_since(start_ts),
                error=e.msg,
            )
            return e.status

        response = result.response
        error = result.error
        sent = 0
        try:
            sent = await response.write_to(writer)
        except OSError as e:
            # client or upstream went away mid-relay; the attempt is dropped
            error = error or describe(e)
        finally:
            await response.close()

        status = response.status
        self.logger.request(
            peer_ip, request.method, uri,
            authorized=True,
            status=status,
            total_bytes=sent,
            duration_ms=_ms_since(start_ts),
            error=error,
            upstream=result.uri,
        )
        return status


async def _reply_quietly(writer: asyncio.StreamWriter, response: SimpleResponse) -> int:
    try:
        return await response.write_to(writer)
    except OSError:
        return 0


async def _linger(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Half-close, then read off unread input so the reply is not reset."""
    try:
        if writer.can_write_eof():
            writer.write_eof()
        await asyncio.wait_for(_discard(reader), LINGER_SECONDS)
    except (OSError, asyncio.TimeoutError):
        pass


async def _discard(reader: asyncio.StreamReader) -> None:
    dropped = 0
    while dropped < DISCARD_LIMIT:
        chunk = await reader.read(BUFFER)
        if not chunk:
            return
        dropped += len(chunk)


def _ms_since(start_ts: float) -> int:
    return int((time.time() - start_ts) * 1000)
