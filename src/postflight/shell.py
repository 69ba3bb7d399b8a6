from __future__ import annotations

from pathlib import Path
import logging
import subprocess


LOGGER = logging.getLogger("postflight.shell")


class CommandError(RuntimeError):
    def __init__(self, argv: list[str], exit_code: int, stdout: str, stderr: str) -> None:
        super().__init__(
            "Command failed\n"
            f"cmd: {' '.join(argv)}\n"
            f"exit: {exit_code}\n"
            f"stdout:\n{stdout}\n"
            f"stderr:\n{stderr}"
        )
        self.argv = argv
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    check: bool = True,
) -> str:
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_text,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and proc.returncode != 0:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            " ".join(argv),
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(argv, proc.returncode, proc.stdout, proc.stderr)
    return proc.stdout


def succeeds(argv: list[str], *, cwd: Path | None = None) -> bool:
    """Run a command purely for its exit status."""
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        text=True,
        capture_output=True,
        check=False,
    )
    return proc.returncode == 0
