import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn


# =========================
# GLOBALS
# =========================
console = Console()
LOG_COLOR = {
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "success": "green",
    "step": "magenta",
    "run": "blue",
}


# =========================
# LOGGING
# =========================
def die(msg: str) -> None:
    console.print(f"[{LOG_COLOR['error']}][FATAL][/]: {escape(msg)}")
    sys.exit(1)

def log_step(msg: str) -> None:
    console.print(f"[{LOG_COLOR['step']}][STEP][/]: {escape(msg)}")

def log_info(msg: str) -> None:
    console.print(f"[{LOG_COLOR['info']}][INFO][/]: {escape(msg)}")

def log_warn(msg: str) -> None:
    console.print(f"[{LOG_COLOR['warning']}][WARNING][/]: {escape(msg)}")

def log_success(msg: str) -> None:
    console.print(f"[{LOG_COLOR['success']}][DONE][/]: {escape(msg)}")

def log_run(cmd: List[str]) -> None:
    console.print(f"[{LOG_COLOR['run']}][RUN][/]: {escape(' '.join(cmd))}", highlight=False)


# =========================
# EXTERNAL COMMANDS
# =========================
@dataclass(frozen=True)
class CommandResult:
    cmd: List[str]
    returncode: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


# Signature shared by run() and the fakes used in tests.
Runner = Callable[..., CommandResult]


def run(
    cmd: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    capture: bool = False,
    placeholder: Optional[str] = None,
    placeholder_column: Optional[str] = "Executing...",
) -> CommandResult:
    """Run an external command and report its exit status.

    Never raises on a non-zero exit: callers decide whether a failure is
    fatal. A command that cannot be started maps to return code 127, the
    same code a shell reports for "command not found".
    """
    log_run(cmd)
    try:
        if placeholder is not None:
            console.print(f"[dim]{escape(placeholder)}[/dim]")
            console.print()  # blank line before spinner

            with Progress(
                SpinnerColumn(style="cyan"),
                TextColumn(placeholder_column),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task("", start=True)
                proc = subprocess.run(cmd, cwd=cwd, env=env, capture_output=capture, text=True)
        else:
            proc = subprocess.run(cmd, cwd=cwd, env=env, capture_output=capture, text=True)
    except OSError as e:
        return CommandResult(cmd=list(cmd), returncode=127, stdout=str(e))
    return CommandResult(cmd=list(cmd), returncode=proc.returncode, stdout=proc.stdout or "")
