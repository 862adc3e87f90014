"""Connection to the texlab server and the build/forward-search requests.

`TexlabRelay` owns one texlab process per workspace. It pushes the settings
to the server when the connection is initialized. It sends the two texlab
specific requests and maps their status codes to user-facing messages.
"""

import logging
import os
import shutil
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .config import TexlabSettings, format_server_error, language_id_for
from .errors import ServerNotFoundError, TexlabError
from .lsp_client import LSPServer

logger = logging.getLogger(__name__)


class StatusKind(Enum):
    """Outcome categories shared by build and forward-search responses."""

    SUCCESS = "success"
    ERROR = "error"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    UNCONFIGURED = "unconfigured"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RequestStatus:
    """Outcome of a build or forward-search request."""

    kind: StatusKind
    code: int

    def __str__(self) -> str:
        return f"{self.kind.value} ({self.code})"


_BUILD_CODES = {
    0: StatusKind.SUCCESS,
    1: StatusKind.ERROR,
    2: StatusKind.FAILURE,
    3: StatusKind.CANCELLED,
}

_FORWARD_SEARCH_CODES = {
    0: StatusKind.SUCCESS,
    1: StatusKind.ERROR,
    2: StatusKind.FAILURE,
    3: StatusKind.UNCONFIGURED,
}

BUILD_MESSAGES: dict[StatusKind, str] = {
    StatusKind.SUCCESS: "Build was succeeded.",
    StatusKind.ERROR: "Build do not succeed.",
    StatusKind.FAILURE: "Build failed.",
    StatusKind.CANCELLED: "Build cancelled.",
}

# Success is silent
FORWARD_SEARCH_MESSAGES: dict[StatusKind, str] = {
    StatusKind.ERROR: "Forward search do not succeed.",
    StatusKind.FAILURE: "Forward search failed.",
    StatusKind.UNCONFIGURED: "Forward search has not been configured.",
}


def _status_code(result: Any) -> int | None:
    if isinstance(result, dict):
        status = result.get("status")
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


def parse_build_status(result: Any) -> RequestStatus:
    """Parse a `textDocument/build` result."""
    code = _status_code(result)
    if code is None:
        return RequestStatus(StatusKind.UNKNOWN, -1)
    return RequestStatus(_BUILD_CODES.get(code, StatusKind.UNKNOWN), code)


def parse_forward_search_status(result: Any) -> RequestStatus:
    """Parse a `textDocument/forwardSearch` result."""
    code = _status_code(result)
    if code is None:
        return RequestStatus(StatusKind.UNKNOWN, -1)
    return RequestStatus(_FORWARD_SEARCH_CODES.get(code, StatusKind.UNKNOWN), code)


def build_message(status: RequestStatus) -> str | None:
    """Message for a build status, or None when the status has none."""
    return BUILD_MESSAGES.get(status.kind)


def forward_search_message(status: RequestStatus) -> str | None:
    """Message for a forward-search status; success and unknown codes have none."""
    return FORWARD_SEARCH_MESSAGES.get(status.kind)


def resolve_server_command(settings: TexlabSettings) -> list[str]:
    """Find the command line used to launch texlab.

    The executable is looked up on the configured search path (or PATH).
    If it is missing, a packaged texlab jar is run with java instead.

    Raises:
        ServerNotFoundError: if neither can be found
    """
    path = None
    if settings.search_path is not None:
        path = os.pathsep.join(settings.search_path)

    executable = shutil.which(settings.executable, path=path)
    if executable:
        return [executable, *settings.executable_args]

    if settings.jar_file and Path(settings.jar_file).expanduser().is_file():
        jar = str(Path(settings.jar_file).expanduser())
        logger.info(f"{settings.executable} not found, falling back to {jar}")
        return [settings.java_executable, *settings.java_args, "-jar", jar]

    details = f"Searched for '{settings.executable}'"
    if settings.jar_file:
        details += f" and jar '{settings.jar_file}'"
    raise ServerNotFoundError(format_server_error("not_found", details))


def _log_progress(params: dict[str, Any]) -> None:
    title = params.get("title")
    if title is None:
        value = params.get("value")
        title = value.get("title") if isinstance(value, dict) else None
    if title:
        logger.info(f"texlab: {title}")


class TexlabRelay:
    """One texlab connection for a workspace.

    Args:
        settings: Settings forwarded to the server on initialization
        workspace: Root directory the server is started in
        notify: Receives messages produced by non-blocking requests
        server_factory: Creates the transport for a resolved command line
    """

    def __init__(
        self,
        settings: TexlabSettings,
        workspace: Path,
        notify: Callable[[str], None] | None = None,
        server_factory: Callable[[list[str], Path], LSPServer] | None = None,
    ):
        self.settings = settings
        self.workspace = workspace
        self.notify = notify or (lambda message: logger.info(message))
        self._server_factory = server_factory or (
            lambda command, workspace: LSPServer("texlab", command, workspace)
        )
        self.server: LSPServer | None = None

    @property
    def is_running(self) -> bool:
        return self.server is not None and self.server.initialized

    def start(self) -> None:
        """Resolve, launch and initialize the server, then push settings."""
        if self.is_running:
            return
        # previous process exited
        self.stop()

        command = resolve_server_command(self.settings)
        server = self._server_factory(command, self.workspace)
        server.on_notification("window/progress", _log_progress)
        server.on_notification("$/progress", _log_progress)
        server.on_request("workspace/configuration", self._answer_configuration)
        server.on_request("window/workDoneProgress/create", lambda params: None)
        server.on_request("client/registerCapability", lambda params: None)

        server.start()
        try:
            server.initialize(self.settings.configuration())
        except TexlabError:
            server.stop()
            raise
        self.server = server
        self.push_configuration()

    def stop(self) -> None:
        if self.server is not None:
            self.server.stop()
            self.server = None

    def push_configuration(self) -> None:
        """Send the full settings object to the server."""
        self._require_server().notify(
            "workspace/didChangeConfiguration",
            {"settings": self.settings.configuration()},
        )

    def build(self, file: Path) -> Future:
        """Request a build of the document; resolves to a RequestStatus."""
        server = self._require_server()
        uri = self._open(server, file)
        return _map_future(
            server.request("textDocument/build", {"textDocument": {"uri": uri}}),
            parse_build_status,
        )

    def forward_search(self, file: Path, line: int) -> Future:
        """Request a forward search at a 1-indexed line; resolves to a RequestStatus."""
        server = self._require_server()
        uri = self._open(server, file)
        return _map_future(
            server.request(
                "textDocument/forwardSearch",
                {
                    "textDocument": {"uri": uri},
                    "position": {"line": max(line - 1, 0), "character": 0},
                },
            ),
            parse_forward_search_status,
        )

    def run_build(self, file: Path, wait: bool | None = None) -> str | None:
        """Build a document and report the outcome.

        Blocking mode returns the message. Non-blocking mode returns None at
        once and passes the message to `notify` when the response arrives.
        `wait` defaults to the opposite of `settings.build_is_async`.
        """
        if wait is None:
            wait = not self.settings.build_is_async

        future = self.build(file)
        if wait:
            return build_message(future.result())

        future.add_done_callback(self._reporter(build_message))
        return None

    def run_forward_search(self, file: Path, line: int) -> None:
        """Forward search, reporting the outcome through `notify`."""
        future = self.forward_search(file, line)
        future.add_done_callback(self._reporter(forward_search_message))

    def _reporter(
        self, to_message: Callable[[RequestStatus], str | None]
    ) -> Callable[[Future], None]:
        def report(future: Future) -> None:
            error = future.exception()
            if error is not None:
                self.notify(str(error))
                return
            message = to_message(future.result())
            if message is not None:
                self.notify(message)

        return report

    def _answer_configuration(self, params: dict[str, Any]) -> list[Any]:
        return [self.settings.section(item.get("section")) for item in params.get("items", [])]

    def _open(self, server: LSPServer, file: Path) -> str:
        language_id = language_id_for(file)
        if language_id is None:
            raise TexlabError(f"Not a LaTeX or BibTeX file: {file}")
        try:
            return server.open_document(file, language_id)
        except OSError as e:
            raise TexlabError(f"Cannot read {file}: {e}") from e

    def _require_server(self) -> LSPServer:
        if self.server is None:
            raise TexlabError("texlab is not running")
        return self.server


def _map_future(source: Future, transform: Callable[[Any], RequestStatus]) -> Future:
    """Chain a Future so it resolves to `transform(result)`."""
    target: Future = Future()

    def done(future: Future) -> None:
        error = future.exception()
        if error is not None:
            target.set_exception(error)
        else:
            target.set_result(transform(future.result()))

    source.add_done_callback(done)
    return target
