"""LSP client implementation for communicating with language servers.

This module provides a small LSP client that can:
1. Start and manage a language server process
2. Send JSON-RPC requests, each answered through a Future
3. Dispatch server notifications and server-initiated requests

Responses are read by a background thread. Future callbacks therefore run on
that thread.
"""

import json
import logging
import subprocess
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any
from urllib.parse import unquote, urlparse

from .errors import ResponseError, TransportError

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[dict[str, Any]], None]
RequestHandler = Callable[[dict[str, Any]], Any]

# JSON-RPC error code for unhandled server requests
METHOD_NOT_FOUND = -32601

INITIALIZE_TIMEOUT = 30.0  # seconds


@dataclass
class Diagnostic:
    """Represents an LSP diagnostic (error/warning/info)."""

    file: Path
    line: int  # 1-indexed for display
    column: int  # 1-indexed for display
    severity: str  # error, warning, info, hint
    message: str
    source: str | None = None  # e.g., "chktex", "latex"
    code: str | None = None

    def __str__(self) -> str:
        sev = self.severity.upper()[:3]
        location = f"{self.file}:{self.line}:{self.column}"
        return f"[{sev}] {location}: {self.message}"


def encode_message(message: dict[str, Any]) -> bytes:
    """Encode a JSON-RPC message with its Content-Length header."""
    content = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(content)}\r\n\r\n".encode("ascii")
    return header + content


def read_message(stream: IO[bytes]) -> dict[str, Any] | None:
    """Read one JSON-RPC message from a stream.

    Returns None at end of stream. Frames without a Content-Length header are
    skipped.
    """
    while True:
        header = b""
        while b"\r\n\r\n" not in header:
            chunk = stream.read(1)
            if not chunk:
                return None
            header += chunk

        content_length = 0
        for line in header.decode("ascii", errors="replace").split("\r\n"):
            if line.lower().startswith("content-length:"):
                content_length = int(line.split(":", 1)[1].strip())
                break

        if content_length == 0:
            continue

        content = stream.read(content_length)
        if len(content) < content_length:
            return None

        try:
            message = json.loads(content.decode("utf-8"))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse LSP message: {e}")
            continue
        if isinstance(message, dict):
            return message
        logger.error(f"Ignoring non-object LSP message: {message!r}")


def _parse_diagnostics(params: dict[str, Any]) -> list[Diagnostic]:
    file_path = Path(unquote(urlparse(params.get("uri", "")).path))
    severity_map = {1: "error", 2: "warning", 3: "info", 4: "hint"}

    diagnostics: list[Diagnostic] = []
    for diag in params.get("diagnostics", []):
        start = diag.get("range", {}).get("start", {})
        diagnostics.append(
            Diagnostic(
                file=file_path,
                line=start.get("line", 0) + 1,  # 0-indexed to 1-indexed
                column=start.get("character", 0) + 1,
                severity=severity_map.get(diag.get("severity", 1), "error"),
                message=diag.get("message", ""),
                source=diag.get("source"),
                code=str(diag.get("code")) if diag.get("code") else None,
            )
        )
    return diagnostics


class LSPServer:
    """Manages a language server process."""

    def __init__(self, name: str, command: list[str], workspace: Path):
        self.name = name
        self.command = command
        self.workspace = workspace
        self.process: subprocess.Popen | None = None
        self.request_id = 0
        self._lock = threading.Lock()  # guards request ids and pending futures
        self._write_lock = threading.Lock()
        self._reader_thread: threading.Thread | None = None
        self._pending: dict[int, Future] = {}
        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._request_handlers: dict[str, RequestHandler] = {}
        self._open_documents: dict[str, int] = {}  # uri -> version
        self._diagnostics: dict[str, list[Diagnostic]] = {}
        self._diagnostics_event = threading.Condition()
        self._initialized = False
        self._closed = False  # set once the reader thread stops

        self.on_notification("textDocument/publishDiagnostics", self._store_diagnostics)

    @property
    def is_running(self) -> bool:
        return (
            self.process is not None
            and not self._closed
            and self.process.poll() is None
        )

    @property
    def initialized(self) -> bool:
        return self._initialized and self.is_running

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """Register a handler for a server notification."""
        self._notification_handlers[method] = handler

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Register a handler answering a server-initiated request."""
        self._request_handlers[method] = handler

    def start(self) -> None:
        """Start the language server process and its reader thread."""
        if self.process is not None:
            logger.warning(f"Server {self.name} already running")
            return

        self._closed = False
        logger.info(f"Starting {self.name}: {' '.join(self.command)}")
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                cwd=self.workspace,
            )
        except OSError as e:
            raise TransportError(f"Failed to start {self.name}: {e}") from e

        self._reader_thread = threading.Thread(
            target=self._read_responses, name=f"{self.name}-reader", daemon=True
        )
        self._reader_thread.start()

    def initialize(self, initialization_options: dict[str, Any] | None = None) -> Any:
        """Perform the initialize/initialized handshake."""
        params = {
            "processId": None,
            "rootUri": self.workspace.as_uri(),
            "capabilities": {
                "workspace": {"configuration": True, "didChangeConfiguration": {}},
                "textDocument": {
                    "publishDiagnostics": {"relatedInformation": True},
                    "synchronization": {"didSave": True},
                },
                "window": {"workDoneProgress": True},
            },
            "initializationOptions": initialization_options,
        }
        future = self.request("initialize", params)
        try:
            result = future.result(timeout=INITIALIZE_TIMEOUT)
        except TimeoutError as e:
            raise TransportError(f"{self.name} did not answer initialize") from e

        self.notify("initialized", {})
        self._initialized = True
        logger.info(f"{self.name} initialized successfully")
        return result

    def stop(self) -> None:
        """Stop the language server process."""
        if self.process is None:
            return

        if self.is_running:
            try:
                self.request("shutdown", None)
                self.notify("exit", None)
            except TransportError as e:
                logger.debug(f"Error during {self.name} shutdown: {e}")
        if self.process.poll() is None:
            self.process.terminate()
        self.process = None
        self._initialized = False
        self._open_documents.clear()

    def request(self, method: str, params: Any) -> Future:
        """Send a JSON-RPC request; the returned Future resolves with its result."""
        future: Future = Future()
        with self._lock:
            self.request_id += 1
            request_id = self.request_id
            if self._closed:
                raise TransportError(f"{self.name} closed its output stream")
            self._pending[request_id] = future

        try:
            self._write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "method": method,
                    "params": params,
                }
            )
        except TransportError:
            with self._lock:
                self._pending.pop(request_id, None)
            raise
        logger.debug(f"Sent {method} request #{request_id}")
        return future

    def notify(self, method: str, params: Any) -> None:
        """Send a JSON-RPC notification (no response expected)."""
        self._write_message({"jsonrpc": "2.0", "method": method, "params": params})

    def open_document(self, file: Path, language_id: str) -> str:
        """Send didOpen (or didChange if already open) for a file. Returns URI."""
        uri = file.as_uri()
        content = file.read_text()

        version = self._open_documents.get(uri)
        if version is None:
            self._open_documents[uri] = 1
            self.notify(
                "textDocument/didOpen",
                {
                    "textDocument": {
                        "uri": uri,
                        "languageId": language_id,
                        "version": 1,
                        "text": content,
                    }
                },
            )
        else:
            self._open_documents[uri] = version + 1
            self.notify(
                "textDocument/didChange",
                {
                    "textDocument": {"uri": uri, "version": version + 1},
                    "contentChanges": [{"text": content}],
                },
            )
        return uri

    def save_document(self, file: Path, language_id: str) -> str:
        """Sync a saved file with the server and send didSave. Returns URI."""
        uri = self.open_document(file, language_id)
        with self._diagnostics_event:
            self._diagnostics.pop(uri, None)
        self.notify("textDocument/didSave", {"textDocument": {"uri": uri}})
        return uri

    def wait_for_diagnostics(self, uri: str, timeout: float) -> list[Diagnostic] | None:
        """Wait until diagnostics for a URI arrive; None if none arrived in time."""
        with self._diagnostics_event:
            self._diagnostics_event.wait_for(lambda: uri in self._diagnostics, timeout)
            return self._diagnostics.get(uri)

    def _write_message(self, message: dict[str, Any]) -> None:
        if self.process is None or self.process.stdin is None:
            raise TransportError(f"{self.name} is not running")

        data = encode_message(message)
        try:
            with self._write_lock:
                self.process.stdin.write(data)
                self.process.stdin.flush()
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to write to {self.name}: {e}") from e

    def _read_responses(self) -> None:
        """Read JSON-RPC messages from the server (runs in background thread)."""
        process = self.process
        if process is None or process.stdout is None:
            return

        try:
            while True:
                message = read_message(process.stdout)
                if message is None:
                    break
                self._dispatch(message)
        except (OSError, ValueError) as e:
            logger.error(f"Reader thread error: {e}")
        finally:
            self._close(TransportError(f"{self.name} closed its output stream"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "method" in message and "id" in message:
            self._answer_server_request(message)
        elif "id" in message:
            self._resolve_response(message)
        elif "method" in message:
            self._handle_notification(message)

    def _resolve_response(self, message: dict[str, Any]) -> None:
        with self._lock:
            future = self._pending.pop(message["id"], None)
        if future is None:
            logger.debug(f"Response for unknown request #{message['id']}")
            return

        error = message.get("error")
        if error is not None:
            future.set_exception(
                ResponseError(error.get("code", 0), error.get("message", ""))
            )
        else:
            future.set_result(message.get("result"))

    def _answer_server_request(self, message: dict[str, Any]) -> None:
        method = message["method"]
        handler = self._request_handlers.get(method)
        if handler is None:
            logger.debug(f"Unhandled server request: {method}")
            reply: dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": f"Unhandled: {method}"},
            }
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": handler(message.get("params") or {}),
            }

        try:
            self._write_message(reply)
        except TransportError as e:
            logger.error(f"Failed to answer {method}: {e}")

    def _handle_notification(self, message: dict[str, Any]) -> None:
        method = message["method"]
        handler = self._notification_handlers.get(method)
        if handler is None:
            logger.debug(f"Ignoring notification: {method}")
            return
        handler(message.get("params") or {})

    def _store_diagnostics(self, params: dict[str, Any]) -> None:
        uri = params.get("uri", "")
        diagnostics = _parse_diagnostics(params)
        logger.debug(f"Received {len(diagnostics)} diagnostics for {uri}")
        with self._diagnostics_event:
            self._diagnostics[uri] = diagnostics
            self._diagnostics_event.notify_all()

    def _close(self, error: Exception) -> None:
        """Mark the connection closed and fail every outstanding request."""
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.set_exception(error)
