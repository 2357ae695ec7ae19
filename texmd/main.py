"""texmd service — HTTP handler for LaTeX to Markdown conversion.

Provides /transform, /transform/batch, /health and /status endpoints
using stdlib http.server.

Usage:
    python -m texmd.main

Environment (or project .env):
    TEXMD_PORT=8770            # HTTP listen port
    TEXMD_WORKERS=4            # Thread pool size for /transform/batch
    TEXMD_LOG_LEVEL=INFO       # Logging level
    TEXMD_*                    # Pipeline defaults, see texmd.settings
"""

from __future__ import annotations

import json
import logging
import signal
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

from texmd.config import Direction, PipelineConfig
from texmd.pipeline import FORWARD_PHASES, REVERSE_PHASES, transform, transform_many
from texmd.settings import get_key, get_port, load_pipeline_config

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

_start_time: float = 0.0

# Pipeline defaults loaded from settings at startup; requests override per field
_base_config: PipelineConfig = PipelineConfig()

_max_workers: int = 4


class JsonFormatter(logging.Formatter):
    """JSON log formatter for Loki/journald."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "service": "texmd",
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class TransformHandler(BaseHTTPRequestHandler):
    """HTTP handler for the conversion service."""

    def do_POST(self) -> None:
        if self.path == "/transform":
            self._handle_transform()
        elif self.path == "/transform/batch":
            self._handle_batch()
        else:
            self._send_error("Not found", "NOT_FOUND", 404)

    def do_GET(self) -> None:
        if self.path == "/health":
            self._handle_health()
        elif self.path == "/status":
            self._handle_status()
        else:
            self._send_error("Not found", "NOT_FOUND", 404)

    def _handle_transform(self) -> None:
        data = self._read_json()
        if data is None:
            return

        text = data.get("text")
        if not isinstance(text, str):
            self._send_error("text field is required", "INVALID_REQUEST", 400)
            return

        options = self._read_options(data)
        if options is None:
            return
        config, direction = options

        start = time.time()
        result, diagnostics = transform(text, config, direction)
        elapsed = int((time.time() - start) * 1000)

        logger.info(
            "transform direction=%s chars=%d diagnostics=%d time_ms=%d",
            direction.value, len(text), len(diagnostics), elapsed,
        )

        self._send_json({
            "text": result,
            "diagnostics": [d.to_dict() for d in diagnostics],
            "time_ms": elapsed,
        })

    def _handle_batch(self) -> None:
        data = self._read_json()
        if data is None:
            return

        documents = data.get("documents")
        if not isinstance(documents, list) or not all(isinstance(d, str) for d in documents):
            self._send_error(
                "documents must be a list of strings", "INVALID_REQUEST", 400,
            )
            return

        options = self._read_options(data)
        if options is None:
            return
        config, direction = options

        start = time.time()
        results = transform_many(documents, config, direction, max_workers=_max_workers)
        elapsed = int((time.time() - start) * 1000)

        logger.info(
            "batch direction=%s documents=%d diagnostics=%d time_ms=%d",
            direction.value, len(documents),
            sum(len(diags) for _, diags in results), elapsed,
        )

        self._send_json({
            "results": [
                {"text": text, "diagnostics": [d.to_dict() for d in diags]}
                for text, diags in results
            ],
            "time_ms": elapsed,
        })

    def _handle_health(self) -> None:
        self._send_json({
            "status": "ok",
            "service": "texmd",
            "uptime_seconds": round(time.time() - _start_time, 1),
        })

    def _handle_status(self) -> None:
        self._send_json({
            "service": "texmd",
            "version": VERSION,
            "uptime_seconds": round(time.time() - _start_time, 1),
            "config": _base_config.to_dict(),
            "phases": {
                "forward": [p.name for p in FORWARD_PHASES],
                "reverse": [p.name for p in REVERSE_PHASES],
            },
        })

    def _read_options(self, data: dict) -> tuple[PipelineConfig, Direction] | None:
        """Direction and per-request config; sends the error response itself."""
        try:
            direction = Direction(data.get("direction", Direction.FORWARD.value))
        except ValueError:
            self._send_error(
                "direction must be 'forward' or 'reverse'", "INVALID_REQUEST", 400,
            )
            return None

        overrides = data.get("config", {})
        if not isinstance(overrides, dict):
            self._send_error("config must be an object", "INVALID_REQUEST", 400)
            return None
        try:
            config = PipelineConfig.from_dict({**_base_config.to_dict(), **overrides})
        except ValueError as e:
            self._send_error(
                str(e), "INVALID_REQUEST", 400,
                {"fields": sorted(_base_config.to_dict())},
            )
            return None
        return config, direction

    def _send_json(self, data: dict, status: int = 200) -> None:
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, error: str, code: str, status: int = 400,
                    details: dict | None = None) -> None:
        response: dict[str, Any] = {"error": error, "code": code}
        if details:
            response["details"] = details
        self._send_json(response, status)

    def _read_json(self) -> dict | None:
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length == 0:
            self._send_error("Request body is empty", "INVALID_JSON", 400)
            return None
        try:
            body = self.rfile.read(content_length)
            data = json.loads(body)
        except (json.JSONDecodeError, ValueError) as e:
            self._send_error(f"Invalid JSON: {e}", "INVALID_JSON", 400)
            return None
        if not isinstance(data, dict):
            self._send_error("Request body must be a JSON object", "INVALID_JSON", 400)
            return None
        return data

    def log_message(self, format: str, *args: Any) -> None:
        logger.info("%s %s", self.client_address[0], format % args)


def _init_settings() -> None:
    """Load pipeline defaults and pool size from settings."""
    global _base_config, _max_workers

    _base_config = load_pipeline_config()
    raw_workers = get_key("TEXMD_WORKERS") or "4"
    try:
        _max_workers = max(1, int(raw_workers))
    except ValueError:
        logger.warning("Ignoring TEXMD_WORKERS=%r", raw_workers)
        _max_workers = 4
    logger.info(
        "Pipeline defaults: %s (batch workers=%d)",
        json.dumps(_base_config.to_dict(), sort_keys=True), _max_workers,
    )


def main() -> None:
    """Start the texmd service."""
    global _start_time

    log_level = (get_key("TEXMD_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    _init_settings()

    port = get_port()
    _start_time = time.time()

    server = HTTPServer(("0.0.0.0", port), TransformHandler)

    if threading.current_thread() is threading.main_thread():
        def sigterm_handler(signum: int, frame: Any) -> None:
            logger.info("SIGTERM received, shutting down...")
            server.shutdown()
        signal.signal(signal.SIGTERM, sigterm_handler)

    logger.info("texmd service starting on port %d", port)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        logger.info("texmd service stopped")


if __name__ == "__main__":
    main()
