"""Generate the Claude settings file that points hooks at the hook server."""

import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .models import HookKind

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_DIR = "~/.hook-relay/tmp/hooks"


def default_forwarder_command() -> str:
    """Command line that runs the forwarder with this interpreter."""
    return f"{shlex.quote(sys.executable)} -m hook_relay.cli.forwarder"


def build_hook_settings(port: int, forwarder_command: Optional[str] = None) -> Dict[str, Any]:
    """
    Build a settings document registering one forwarder hook per HookKind.

    Args:
        port: Port the hook server is listening on
        forwarder_command: Command prefix for the forwarder (default: this interpreter)

    Returns:
        Dict suitable for `claude --settings <file>`
    """
    command = forwarder_command or default_forwarder_command()
    hooks = {}
    for kind in HookKind:
        hooks[kind.claude_event] = [
            {
                "hooks": [
                    {
                        "type": "command",
                        "command": f"{command} {port} {kind.value}",
                    }
                ],
            }
        ]
    return {"hooks": hooks}


def settings_path_for(settings_dir: str, pid: Optional[int] = None) -> Path:
    """Per-process settings file path, so concurrent parents never collide."""
    return Path(settings_dir).expanduser() / f"session-hook-{pid or os.getpid()}.json"


def write_hook_settings(
    port: int,
    settings_dir: str = DEFAULT_SETTINGS_DIR,
    forwarder_command: Optional[str] = None,
) -> Path:
    """Write the hook settings file for this process and return its path."""
    path = settings_path_for(settings_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(build_hook_settings(port, forwarder_command), f, indent=2)

    logger.info(f"Wrote hook settings to {path} (port {port})")
    return path


def remove_hook_settings(path: Path) -> bool:
    """
    Delete a hook settings file.

    Returns:
        True if the file was removed, False if it was already gone or
        could not be deleted
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove hook settings {path}: {e}")
        return False
    logger.debug(f"Removed hook settings {path}")
    return True
