"""Exceptions raised by the texlab plugin."""


class TexlabError(Exception):
    """Base class for texlab plugin errors."""


class ConfigError(TexlabError):
    """Invalid settings value."""


class ServerNotFoundError(TexlabError):
    """No texlab executable or packaged jar could be found."""


class TransportError(TexlabError):
    """The server process or its streams are unusable."""


class ResponseError(TexlabError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"LSP error {code}: {message}")
        self.code = code
        self.message = message
