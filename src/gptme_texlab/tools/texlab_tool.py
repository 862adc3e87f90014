"""texlab tool for gptme - builds LaTeX documents and runs forward search.

This tool talks to the texlab language server:
- build: Compile a document with the configured build tool (latexmk by default)
- search: Show a source line in the configured PDF viewer (SyncTeX forward search)
- status: Show how texlab will be launched and the active settings
- viewers: List forward-search viewer presets
- stop: Stop the texlab server for the workspace

Settings come from the [plugin.texlab] section of gptme.toml.
"""

import logging
import subprocess
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

from gptme.message import Message
from gptme.tools.base import Parameter, ToolSpec
from rich.console import Console

from ..config import language_id_for, load_settings
from ..errors import ServerNotFoundError, TexlabError
from ..relay import TexlabRelay, resolve_server_command
from ..viewers import PRESETS

if TYPE_CHECKING:
    from gptme.commands import CommandContext
    from gptme.tools.base import ConfirmFunc

logger = logging.getLogger(__name__)

console = Console(log_path=False)

USAGE = (
    "Usage: texlab <action> [args]\n\n"
    "Actions:\n"
    "  build <file> [--wait|--no-wait] - Build a LaTeX document\n"
    "  search <file:line>              - Forward search to a line in the PDF viewer\n"
    "  status                          - Show texlab command and settings\n"
    "  viewers                         - List forward-search viewer presets\n"
    "  stop                            - Stop the texlab server"
)

# One relay per workspace
_relays: dict[str, TexlabRelay] = {}


def _get_workspace() -> Path:
    """Get the current workspace directory."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return Path(result.stdout.strip())
    except (OSError, subprocess.TimeoutExpired):
        pass

    return Path.cwd()


def _print_message(message: str) -> None:
    console.print(f"[bold cyan]texlab:[/bold cyan] {message}")


def get_relay(workspace: Path) -> TexlabRelay:
    """Get the relay for a workspace, starting texlab if needed.

    Raises:
        TexlabError: if texlab cannot be found or started
    """
    key = str(workspace)
    relay = _relays.get(key)
    if relay is not None and not relay.is_running:
        # settings are re-read for every new connection
        relay.stop()
        relay = None
    if relay is None:
        relay = TexlabRelay(load_settings(workspace), workspace, notify=_print_message)
        _relays[key] = relay

    if not relay.is_running:
        relay.start()
    return relay


def get_running_relay(workspace: Path) -> TexlabRelay | None:
    """Get the relay for a workspace only if its server is already running."""
    relay = _relays.get(str(workspace))
    if relay is not None and relay.is_running:
        return relay
    return None


def stop_all() -> None:
    """Stop every texlab server started by this tool."""
    for relay in _relays.values():
        relay.stop()
    _relays.clear()


def _parse_position(target: str) -> tuple[Path, int]:
    """Parse a position string like 'main.tex:42' into (path, line).

    Raises:
        ValueError: If target format is invalid

    Note:
        Handles Windows paths with drive letters (e.g., C:/thesis/main.tex:42)
    """
    if len(target) >= 2 and target[1] == ":" and target[0].isalpha():
        file_path, sep, line_str = target[2:].rpartition(":")
        file_path = target[:2] + file_path
    else:
        file_path, sep, line_str = target.rpartition(":")

    if not sep or not file_path:
        raise ValueError(f"Invalid position format: {target}. Expected 'file:line'")

    try:
        line = int(line_str)
    except ValueError:
        raise ValueError(f"Invalid line number: {line_str}") from None
    if line < 1:
        raise ValueError(f"Invalid line number: {line_str}")

    return Path(file_path), line


def _resolve_file(file: Path, workspace: Path) -> Path | str:
    """Make a file absolute and check texlab can serve it; returns an error string otherwise."""
    if not file.is_absolute():
        file = workspace / file
    if not file.exists():
        return f"Error: File not found: {file}"
    if language_id_for(file) is None:
        return f"Unsupported file type: {file.suffix or file.name} (expected .tex or .bib)"
    return file


def _build(args: list[str], workspace: Path) -> Message:
    targets = [a for a in args if not a.startswith("--")]
    flags = {a for a in args if a.startswith("--")}
    if not targets:
        return Message("system", "Usage: texlab build <file> [--wait|--no-wait]")

    wait: bool | None = None
    if "--wait" in flags:
        wait = True
    elif "--no-wait" in flags:
        wait = False

    file = _resolve_file(Path(targets[0]), workspace)
    if isinstance(file, str):
        return Message("system", file)

    relay = get_relay(workspace)
    if wait is None:
        wait = not relay.settings.build_is_async

    logger.debug(f"Building {file} (wait={wait})")
    message = relay.run_build(file, wait=wait)
    if not wait:
        return Message(
            "system",
            f"Build of `{file.name}` started; the result will be reported when it finishes.",
        )
    if message is None:
        return Message("system", f"Build of `{file.name}` finished with an unknown status.")
    return Message("system", message)


def _search(args: list[str], workspace: Path) -> Message:
    if not args:
        return Message("system", "Usage: texlab search <file:line>")

    try:
        target, line = _parse_position(args[0])
    except ValueError as e:
        return Message("system", f"Error: {e}")

    file = _resolve_file(target, workspace)
    if isinstance(file, str):
        return Message("system", file)

    relay = get_relay(workspace)
    relay.run_forward_search(file, line)
    return Message("system", f"Forward search requested for `{file.name}` line {line}.")


def _status(workspace: Path) -> Message:
    settings = load_settings(workspace)
    status_lines = ["**texlab Status**\n"]

    try:
        command = resolve_server_command(settings)
        status_lines.append(f"✅ Server command: `{' '.join(command)}`")
    except ServerNotFoundError as e:
        status_lines.append(f"❌ {e}")

    running = get_running_relay(workspace) is not None
    status_lines.append(f"{'✅' if running else '⏸️'} Running: {'yes' if running else 'no'}")

    status_lines.append(
        f"\n**Build:** `{settings.build_executable} {' '.join(settings.build_args)}`"
        f" (on save: {settings.build_on_save},"
        f" {'async' if settings.build_is_async else 'blocking'})"
    )
    if settings.forward_search_executable:
        status_lines.append(
            f"**Forward search:** `{settings.forward_search_executable}"
            f" {' '.join(settings.forward_search_args)}`"
        )
    else:
        status_lines.append("**Forward search:** not configured")
    status_lines.append(
        f"**Lint:** on edit: {settings.lint_on_edit},"
        f" on open/save: {settings.lint_on_open_and_save}"
    )
    status_lines.append(
        f"**Formatters:** LaTeX: {settings.latex_formatter.value},"
        f" BibTeX: {settings.bibtex_formatter.value}"
    )
    status_lines.append(f"\n**Workspace:** {workspace}")

    return Message("system", "\n".join(status_lines))


def _viewers() -> Message:
    lines = ["**Forward-search viewer presets**\n"]
    for name, (executable, args) in sorted(PRESETS.items()):
        lines.append(f"- `{name}`: `{executable} {' '.join(args)}`")
    lines.append('\nSet `forward_search_viewer = "<name>"` under [plugin.texlab] in gptme.toml.')
    return Message("system", "\n".join(lines))


def execute(
    code: str | None,
    args: list[str] | None,
    kwargs: dict[str, str] | None,
    confirm: "ConfirmFunc",
) -> Message:
    """Execute the texlab tool.

    Usage:
        texlab build <file>         - Build a LaTeX document
        texlab search <file:line>   - Forward search in the PDF viewer
        texlab status               - Show texlab command and settings
        texlab viewers              - List viewer presets
        texlab stop                 - Stop the texlab server
    """
    if not args and kwargs and kwargs.get("action"):
        args = [kwargs["action"], *kwargs.get("target", "").split()]

    if not args:
        return Message("system", USAGE)

    action = args[0].lower()
    workspace = _get_workspace()

    try:
        if action == "build":
            return _build(args[1:], workspace)
        elif action == "search":
            return _search(args[1:], workspace)
        elif action == "status":
            return _status(workspace)
        elif action == "viewers":
            return _viewers()
        elif action == "stop":
            relay = _relays.pop(str(workspace), None)
            if relay is None:
                return Message("system", "texlab is not running.")
            relay.stop()
            return Message("system", "texlab stopped.")
        else:
            return Message(
                "system",
                f"Unknown action: {action}\n\n"
                "Available actions: build, search, status, viewers, stop",
            )
    except TexlabError as e:
        logger.debug(f"texlab {action} failed: {e}")
        return Message("system", f"Error: {e}")


def _texlab_command(ctx: "CommandContext") -> Generator[Message, None, None]:
    """Handler for /texlab command.

    Usage:
        /texlab                     - Show texlab status
        /texlab build <file>        - Build a document
        /texlab search <file:line>  - Forward search
    """
    args = ctx.args if ctx.args else ["status"]
    yield execute(code=None, args=args, kwargs=None, confirm=ctx.confirm)


# Tool specification
tool = ToolSpec(
    name="texlab",
    desc="Build LaTeX documents and run forward search through the texlab language server",
    instructions="""Use texlab to compile LaTeX documents and jump to source lines in the PDF viewer.

**Commands:**
- `texlab build <file.tex>` - Compile the document (latexmk by default); add `--wait` to block until done
- `texlab search <file.tex:line>` - Highlight the PDF position for a source line (SyncTeX)
- `texlab status` - Check that texlab is installed and show settings
- `texlab viewers` - List PDF viewer presets for forward search
- `texlab stop` - Stop the server

Saving a .tex or .bib file notifies texlab, which lints and (if `build_on_save` is set) builds it.
""",
    execute=execute,
    block_types=["texlab"],
    parameters=[
        Parameter(
            name="action",
            type="string",
            description="Action: build, search, status, viewers, stop",
            required=True,
        ),
        Parameter(
            name="target",
            type="string",
            description="File path (build) or position file:line (search)",
            required=False,
        ),
    ],
    commands={"texlab": _texlab_command},
)
