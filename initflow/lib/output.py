"""
Console output helpers shared by CLI commands.

Human output goes through a rich Console; --json output is plain
json.dumps so it can be piped into other tools.
"""

import json
import sys
from typing import Any

from rich.console import Console
from rich.markup import escape

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    "done": "green",
    "ready": "yellow",
    "blocked": "red",
    "passed": "green",
    "pending": "dim",
}

STATUS_SYMBOLS = {
    "done": "✓",
    "ready": "○",
    "blocked": "✗",
}


def emit_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def report_error(args, message: str) -> None:
    """Print an error in the requested output mode."""
    if getattr(args, "json", False):
        emit_json({"error": message})
    else:
        err_console.print(f"[red]ERROR:[/red] {escape(message)}", highlight=False)


def styled(status: str) -> str:
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status
