"""Pytest configuration for gptme_texlab tests."""

from concurrent.futures import Future
from pathlib import Path

import pytest

from gptme_texlab.config import TexlabSettings
from gptme_texlab.relay import TexlabRelay


class FakeServer:
    """In-process stand-in for LSPServer that records traffic."""

    def __init__(self, command: list[str], workspace: Path):
        self.command = command
        self.workspace = workspace
        self.initialized = False
        self.started = False
        self.initialization_options = None
        self.requests: list[tuple[str, object]] = []
        self.notifications: list[tuple[str, object]] = []
        self.notification_handlers: dict = {}
        self.request_handlers: dict = {}
        self.results: dict[str, object] = {}
        self.pending: dict[str, list[Future]] = {}
        self.diagnostics: dict[str, list] = {}

    def on_notification(self, method, handler):
        self.notification_handlers[method] = handler

    def on_request(self, method, handler):
        self.request_handlers[method] = handler

    def start(self):
        self.started = True

    def initialize(self, initialization_options=None):
        self.initialization_options = initialization_options
        self.initialized = True

    def stop(self):
        self.initialized = False

    def request(self, method, params):
        self.requests.append((method, params))
        future: Future = Future()
        if method in self.results:
            future.set_result(self.results[method])
        else:
            self.pending.setdefault(method, []).append(future)
        return future

    def respond(self, method, result):
        self.pending[method].pop(0).set_result(result)

    def notify(self, method, params):
        self.notifications.append((method, params))

    def open_document(self, file, language_id):
        return file.as_uri()

    def save_document(self, file, language_id):
        uri = file.as_uri()
        self.notifications.append(("textDocument/didSave", {"textDocument": {"uri": uri}}))
        return uri

    def wait_for_diagnostics(self, uri, timeout):
        return self.diagnostics.get(uri)


@pytest.fixture
def fake_servers():
    """Factory creating FakeServer instances; the list collects every one created."""
    created: list[FakeServer] = []

    def factory(command, workspace):
        server = FakeServer(command, workspace)
        created.append(server)
        return server

    factory.created = created  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def texlab_on_path(tmp_path, monkeypatch):
    """Make `texlab` resolvable by pointing the resolver at a fake binary."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    exe = bin_dir / "texlab"
    exe.write_text("#!/bin/sh\n")
    exe.chmod(0o755)
    return bin_dir


@pytest.fixture
def tex_file(tmp_path):
    file = tmp_path / "main.tex"
    file.write_text("\\documentclass{article}\n\\begin{document}\nHi\n\\end{document}\n")
    return file


@pytest.fixture
def messages():
    return []


@pytest.fixture
def relay(tmp_path, texlab_on_path, fake_servers, messages):
    """A started relay backed by a FakeServer."""
    settings = TexlabSettings(search_path=(str(texlab_on_path),))
    relay = TexlabRelay(
        settings, tmp_path, notify=messages.append, server_factory=fake_servers
    )
    relay.start()
    return relay
