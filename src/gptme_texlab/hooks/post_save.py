"""Post-save hook forwarding LaTeX and BibTeX saves to texlab.

texlab lints on save and, with `build_on_save`, builds on save; both are
triggered by the didSave notification this hook sends. Errors reported back
shortly afterwards are surfaced in the conversation.
"""

import logging
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

from gptme.hooks import HookType, register_hook
from gptme.message import Message

from ..config import language_id_for
from ..errors import TexlabError
from ..tools.texlab_tool import get_running_relay

if TYPE_CHECKING:
    from gptme.logmanager import Log
    from gptme.tools.base import ToolUse

logger = logging.getLogger(__name__)

# Seconds to wait for diagnostics after a save
DIAGNOSTICS_WAIT = 2.0

MAX_REPORTED_ERRORS = 3


def _saved_file(tool_use: "ToolUse", workspace: Path | None) -> Path | None:
    """Return the absolute path written by a save/patch tool use, if any."""
    if tool_use.tool not in ("save", "patch"):
        return None
    if not tool_use.args:
        return None

    file = Path(tool_use.args[0])
    if not file.is_absolute() and workspace:
        file = workspace / file
    return file


def post_save_texlab_hook(
    log: "Log",
    workspace: Path | None,
    tool_use: "ToolUse",
) -> Generator[Message, None, None]:
    """Hook that runs after file save operations.

    Only acts when a texlab server is already running for the workspace, so
    saving an unrelated project never launches one.

    Args:
        log: The conversation log
        workspace: Workspace directory path
        tool_use: The tool that just executed (save or patch)
    """
    file = _saved_file(tool_use, workspace)
    if file is None or not file.exists():
        return

    language_id = language_id_for(file)
    if language_id is None or workspace is None:
        return

    relay = get_running_relay(workspace)
    if relay is None or relay.server is None:
        return

    logger.debug(f"Forwarding save of {file} to texlab")
    try:
        uri = relay.server.save_document(file, language_id)
    except (TexlabError, OSError) as e:
        logger.warning(f"Could not forward save of {file}: {e}")
        return

    diagnostics = relay.server.wait_for_diagnostics(uri, DIAGNOSTICS_WAIT)
    errors = [d for d in diagnostics or [] if d.severity == "error"]
    if not errors:
        return

    lines = [f"  Line {d.line}: {d.message}" for d in errors[:MAX_REPORTED_ERRORS]]
    extra = (
        f" (+{len(errors) - MAX_REPORTED_ERRORS} more)"
        if len(errors) > MAX_REPORTED_ERRORS
        else ""
    )
    yield Message(
        "system",
        f"⚡ **texlab** found {len(errors)} error(s) in `{file.name}`{extra}:\n"
        + "\n".join(lines),
    )


def register() -> None:
    """Register texlab hooks with gptme."""
    logger.info("texlab plugin: Registering hooks")

    register_hook(
        name="texlab.post_save",
        hook_type=HookType.TOOL_POST_EXECUTE,
        func=post_save_texlab_hook,
        priority=0,
    )

    logger.info("texlab plugin: Hooks registered")
