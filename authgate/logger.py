"""
authgate.logger
~~~~~~~~~~~~~~~
Human-readable console lines *and* JSON lines with daily rotation.
One ``request`` event is written per handled request.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_ISO = "%Y-%m-%dT%H:%M:%SZ"
LOGGER_NAME = "authgate"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z 127.0.0.1 GET /a?b=c auth=yes 200 327B 89 ms """

    def format(self, record):  # type: ignore[override]
        d: Dict[str, Any] = record.msg if isinstance(record.msg, dict) else {}
        event = d.get("event")
        if event is None:
            return super().format(record)

        parts = [d.get("ts", _now())]
        if event == "request":
            parts.extend(
                [
                    d.get("ip", "-"),
                    d.get("method", "-"),
                    d.get("uri", "-"),
                    "auth=yes" if d.get("authorized") else "auth=no",
                    str(d.get("status", "-")),
                    f'{d.get("bytes", 0):,}B',
                    f'{d.get("ms", 0)} ms',
                ]
            )
            if d.get("reason"):
                parts.append(f'({d["reason"]})')
            if d.get("error"):
                parts.append(f'error={d["error"]}')
        elif event == "bad_request":
            parts.extend([d.get("ip", "-"), "BAD REQUEST", d.get("reason", "")])
        elif event == "listening":
            parts.append(f'listening on {d.get("bind")} -> {d.get("upstream")}')
        else:
            parts.extend([event, d.get("error", "")])
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        return json.dumps(record.msg, separators=(",", ":"))


class ProxyLogger:
    def __init__(self, basename: Optional[str | Path], console: bool = True):
        root = logging.getLogger(LOGGER_NAME)
        root.setLevel(logging.INFO)
        root.propagate = False  # don't spam the root logger

        # a fresh ProxyLogger replaces whatever an earlier one installed
        for old in list(root.handlers):
            root.removeHandler(old)
            old.close()

        if console:
            c = logging.StreamHandler()
            c.setFormatter(_PlainFormatter())
            root.addHandler(c)

        if basename:
            basename = Path(basename).with_suffix("")  # authgate
            jsonl_file = basename.with_suffix(".jsonl")

            # json lines
            h = logging.handlers.TimedRotatingFileHandler(
                jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
            )
            h.setFormatter(_JSONFormatter())
            root.addHandler(h)

        if not root.handlers:
            root.addHandler(logging.NullHandler())

        self.log = root

    def request(
        self,
        ip: str,
        method: str,
        uri: str,
        authorized: bool,
        status: int,
        total_bytes: int = 0,
        duration_ms: int = 0,
        error: Optional[str] = None,
        reason: Optional[str] = None,
        upstream: Optional[str] = None,
    ):
        event: Dict[str, Any] = {
            "event": "request",
            "ts": _now(),
            "ip": ip,
            "method": method,
            "uri": uri,
            "authorized": authorized,
            "status": status,
            "bytes": total_bytes,
            "ms": duration_ms,
        }
        if authorized:
            event["upstream"] = upstream
            event["error"] = error
        else:
            event["reason"] = reason
        level = logging.WARNING if (not authorized or error) else logging.INFO
        self.log.log(level, event)

    def bad_request(self, ip: str, reason: str):
        self.log.warning(
            {
                "event": "bad_request",
                "ts": _now(),
                "ip": ip,
                "reason": reason,
            }
        )

    def listening(self, bind: str, upstream: str):
        self.log.info(
            {
                "event": "listening",
                "ts": _now(),
                "bind": bind,
                "upstream": upstream,
            }
        )

    def server_error(self, error: str):
        self.log.error(
            {
                "event": "server_error",
                "ts": _now(),
                "error": error,
            }
        )
