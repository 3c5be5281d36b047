"""
Shared pytest fixtures for the authgate test suite.

- ``cfg``: a Config for user ``bob`` / ``hunter2`` pointing at a dummy origin
- ``basic``: builds ``Basic <base64>`` header values
- ``sink``: an in-memory stand-in for ``asyncio.StreamWriter``
"""

import base64
import logging

import pytest

from authgate.config import Config, parse_origin
from authgate.logger import LOGGER_NAME


class BufferWriter:
    """Collects everything written to it, like a StreamWriter with no peer."""

    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data):
        self.data += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.fixture
def cfg() -> Config:
    return Config(
        upstream=parse_origin("http://upstream.internal:8080"),
        username="bob",
        password="hunter2",
        realm="My special place",
        listen_host="127.0.0.1",
        listen_port=0,
        upstream_timeout=2.0,
        log_path="",
    )


@pytest.fixture
def basic():
    def _basic(payload) -> str:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return "Basic " + base64.b64encode(payload).decode("ascii")

    return _basic


@pytest.fixture
def sink() -> BufferWriter:
    return BufferWriter()


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    root = logging.getLogger(LOGGER_NAME)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
