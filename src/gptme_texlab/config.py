"""texlab plugin configuration management.

Supports loading settings from:
1. User-level: ~/.config/gptme/config.toml
2. Project-level: gptme.toml in workspace root

Configuration format (using plugin.texlab namespace):
```toml
[plugin.texlab]
executable = "texlab"
build_executable = "latexmk"
build_args = ["-pdf", "-interaction=nonstopmode", "-synctex=1", "%f"]
build_on_save = true
forward_search_viewer = "zathura"
lint_on_open_and_save = true
latex_formatter = "texlab"
```

Keys are the field names of `TexlabSettings`. The settings object is
immutable; it is read once per connection and forwarded to the server.
"""

import dataclasses
import fnmatch
import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .viewers import apply_preset

logger = logging.getLogger(__name__)

# Sections the settings object is pushed under, one per served file type
CONFIGURATION_SECTIONS: tuple[str, ...] = ("latex", "bibtex")

# Sections answered when the server pulls configuration
_PULL_SECTIONS = {"texlab", *CONFIGURATION_SECTIONS}

# File name pattern to LSP language id
FILE_ASSOCIATIONS: dict[str, str] = {
    "*.tex": "latex",
    "*.bib": "bibtex",
}

INSTALL_HINT = (
    "cargo install --locked texlab  (or: conda install -c conda-forge texlab)"
)


class Formatter(str, Enum):
    """Formatter backends texlab can delegate to."""

    TEXLAB = "texlab"
    LATEXINDENT = "latexindent"


@dataclass(frozen=True)
class TexlabSettings:
    """Settings for one texlab connection."""

    # Server process
    executable: str = "texlab"
    executable_args: tuple[str, ...] = ()
    search_path: tuple[str, ...] | None = None
    jar_file: str | None = None
    java_executable: str = "java"
    java_args: tuple[str, ...] = ()

    # Forwarded to the server
    root_directory: str = "."
    build_executable: str = "latexmk"
    build_args: tuple[str, ...] = (
        "-pdf",
        "-interaction=nonstopmode",
        "-synctex=1",
        "%f",
    )
    build_output_directory: str = "."
    build_forward_search_after: bool = False
    build_on_save: bool = False
    forward_search_executable: str | None = None
    forward_search_args: tuple[str, ...] = ()
    lint_on_edit: bool = False
    lint_on_open_and_save: bool = False
    diagnostics_delay: int = 300
    formatter_line_length: int = 80
    bibtex_formatter: Formatter = Formatter.TEXLAB
    latex_formatter: Formatter = Formatter.LATEXINDENT
    latexindent_local: str | None = None
    latexindent_modify_line_breaks: bool = False

    # Client side only
    build_is_async: bool = True

    def __post_init__(self) -> None:
        for name in ("diagnostics_delay", "formatter_line_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")

        for name in ("bibtex_formatter", "latex_formatter"):
            value = getattr(self, name)
            try:
                object.__setattr__(self, name, Formatter(value))
            except ValueError:
                choices = ", ".join(f.value for f in Formatter)
                raise ConfigError(
                    f"{name} must be one of {choices}, got {value!r}"
                ) from None

        for name in (
            "executable_args",
            "java_args",
            "build_args",
            "forward_search_args",
            "search_path",
        ):
            value = getattr(self, name)
            if value is None and name == "search_path":
                continue
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(v, str) for v in value
            ):
                raise ConfigError(f"{name} must be a list of strings, got {value!r}")
            object.__setattr__(self, name, tuple(value))

    def to_payload(self) -> dict[str, Any]:
        """Build the settings object in the shape texlab expects."""
        return {
            "rootDirectory": self.root_directory,
            "build": {
                "executable": self.build_executable,
                "args": list(self.build_args),
                "auxDirectory": self.build_output_directory,
                "forwardSearchAfter": self.build_forward_search_after,
                "onSave": self.build_on_save,
            },
            "forwardSearch": {
                "executable": self.forward_search_executable,
                "args": list(self.forward_search_args),
            },
            "chktex": {
                "onEdit": self.lint_on_edit,
                "onOpenAndSave": self.lint_on_open_and_save,
            },
            "diagnosticsDelay": self.diagnostics_delay,
            "formatterLineLength": self.formatter_line_length,
            "bibtexFormatter": self.bibtex_formatter.value,
            "latexFormatter": self.latex_formatter.value,
            "latexindent": {
                "local": self.latexindent_local,
                "modifyLineBreaks": self.latexindent_modify_line_breaks,
            },
        }

    def configuration(self) -> dict[str, Any]:
        """Full settings object keyed by configuration section."""
        return {section: self.to_payload() for section in CONFIGURATION_SECTIONS}

    def section(self, name: str | None) -> dict[str, Any] | None:
        """Answer a `workspace/configuration` item for the given section."""
        if name is None or name.split(".")[0] in _PULL_SECTIONS:
            return self.to_payload()
        return None


_FIELD_NAMES = {f.name for f in dataclasses.fields(TexlabSettings)}


def language_id_for(path: Path | str) -> str | None:
    """Return the LSP language id for a file, or None if texlab does not serve it."""
    name = Path(path).name.lower()
    for pattern, language_id in FILE_ASSOCIATIONS.items():
        if fnmatch.fnmatch(name, pattern):
            return language_id
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file, returning empty dict on failure."""
    if not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}


def _plugin_section(config: dict[str, Any]) -> dict[str, Any]:
    plugin = config.get("plugin", {})
    if not isinstance(plugin, dict):
        return {}
    section = plugin.get("texlab", {})
    return section if isinstance(section, dict) else {}


def settings_from_mapping(values: dict[str, Any]) -> TexlabSettings:
    """Build settings from a flat mapping of field names, ignoring unknown keys."""
    values = dict(values)
    viewer = values.pop("forward_search_viewer", None)

    known: dict[str, Any] = {}
    for key, value in values.items():
        if key in _FIELD_NAMES:
            known[key] = value
        else:
            logger.warning(f"Ignoring unknown texlab setting: {key}")

    settings = TexlabSettings(**known)
    if viewer not in (None, ""):
        settings = apply_preset(settings, viewer)
    return settings


def load_settings(workspace: Path) -> TexlabSettings:
    """Load texlab settings.

    Searches for config in order (later overrides earlier):
    1. Default built-in settings
    2. User config: ~/.config/gptme/config.toml [plugin.texlab]
    3. Project config: gptme.toml in workspace root [plugin.texlab]

    Returns:
        An immutable TexlabSettings instance
    """
    values: dict[str, Any] = {}

    user_config_path = Path.home() / ".config" / "gptme" / "config.toml"
    user_section = _plugin_section(_load_toml(user_config_path))
    if user_section:
        logger.debug(f"Loaded user texlab config from {user_config_path}")
        values.update(user_section)

    project_config_path = workspace / "gptme.toml"
    project_section = _plugin_section(_load_toml(project_config_path))
    if project_section:
        logger.info(f"Loaded project texlab config from {project_config_path}")
        values.update(project_section)

    return settings_from_mapping(values)


def format_server_error(
    error_type: str,
    details: str | None = None,
) -> str:
    """Format a helpful error message for texlab server issues.

    Args:
        error_type: Type of error ("not_found", "start_failed", "crash")
        details: Additional error details

    Returns:
        User-friendly error message with hints
    """
    if error_type == "not_found":
        msg = "texlab language server not found."
        if details:
            msg += f"\n  → {details}"
        msg += f"\n  → Install with: {INSTALL_HINT}"
        return msg

    elif error_type == "start_failed":
        msg = "Failed to start texlab language server."
        if details:
            msg += f"\n  → Error: {details}"
        msg += f"\n  → Verify installation: {INSTALL_HINT}"
        return msg

    elif error_type == "crash":
        msg = "The texlab language server stopped unexpectedly."
        if details:
            msg += f"\n  → Error: {details}"
        msg += "\n  → The server will be restarted on next command."
        return msg

    else:
        msg = f"texlab error: {error_type}"
        if details:
            msg += f"\n  → {details}"
        return msg
