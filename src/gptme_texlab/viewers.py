"""Forward-search presets for common PDF viewers.

texlab runs the configured executable with `%f` (TeX file), `%p` (PDF file)
and `%l` (line) substituted in the argument list.
"""

import dataclasses
from typing import TYPE_CHECKING

from .errors import ConfigError

if TYPE_CHECKING:
    from .config import TexlabSettings

PRESETS: dict[str, tuple[str, tuple[str, ...]]] = {
    "zathura": ("zathura", ("--synctex-forward", "%l:1:%f", "%p")),
    "okular": ("okular", ("--unique", "file:%p#src:%l%f")),
    "evince": ("evince-synctex", ("-f", "%l", "%p", "code -g %f:%l")),
    "skim": (
        "/Applications/Skim.app/Contents/SharedSupport/displayline",
        ("%l", "%p", "%f"),
    ),
    "sioyek": (
        "sioyek",
        (
            "--reuse-window",
            "--forward-search-file",
            "%f",
            "--forward-search-line",
            "%l",
            "%p",
        ),
    ),
    "qpdfview": ("qpdfview", ("--unique", "%p#src:%f:%l:1")),
    "sumatrapdf": (
        "SumatraPDF.exe",
        ("-reuse-instance", "%p", "-forward-search", "%f", "%l"),
    ),
}


def apply_preset(settings: "TexlabSettings", viewer: str) -> "TexlabSettings":
    """Return a copy of settings with forward search set up for a viewer."""
    if not isinstance(viewer, str):
        raise ConfigError(f"forward_search_viewer must be a string, got {viewer!r}")
    try:
        executable, args = PRESETS[viewer.lower()]
    except KeyError:
        known = ", ".join(sorted(PRESETS))
        raise ConfigError(f"Unknown viewer {viewer!r}, expected one of: {known}") from None

    return dataclasses.replace(
        settings,
        forward_search_executable=executable,
        forward_search_args=args,
    )
