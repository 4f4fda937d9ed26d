# sake/core/command.py

import shlex
import subprocess
from pathlib import Path

from sake.core.logger import LoggerProxy

log = LoggerProxy(__name__)


class CommandResult:
    """Outcome of handing a command to the operating system."""

    def __init__(self, returncode: int, stdout: str = "", stderr: str = "", pid: int | None = None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.pid = pid

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def __bool__(self) -> bool:
        return self.success


def run_command(
    cmd_list: list[str],
    capture: bool = False,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """
    Run an external command to completion.

    Args:
        cmd_list: Command and arguments.
        capture: Capture stdout/stderr instead of letting them reach the terminal.
        cwd: Working directory.
        env: Environment for the child process.

    Returns:
        CommandResult with the exit status (127 if the program does not exist).
    """
    cmd_str = shlex.join(cmd_list)
    log.info("Running: %s%s", cmd_str, f" in {cwd}" if cwd else "")

    try:
        process = subprocess.run(
            cmd_list,
            check=False,
            capture_output=capture,
            text=True,
            cwd=cwd,
            env=env,
        )
    except FileNotFoundError:
        log.error("Command not found: %s", cmd_list[0])
        return CommandResult(returncode=127, stderr=f"Command not found: {cmd_list[0]}")

    stdout = process.stdout.strip() if process.stdout else ""
    stderr = process.stderr.strip() if process.stderr else ""
    if process.returncode != 0:
        log.warning("Command exited with %d: %s", process.returncode, cmd_str)
    else:
        log.debug("Command finished: %s", cmd_str)
    return CommandResult(process.returncode, stdout, stderr)


def spawn_detached(cmd_list: list[str], log_path: Path) -> CommandResult:
    """
    Start *cmd_list* in its own session with output appended to *log_path*.

    Returns immediately; the result carries the child's pid.
    """
    log_path = Path(log_path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log.info("Detaching: %s (output in %s)", shlex.join(cmd_list), log_path)
    try:
        with log_path.open("ab") as out:
            process = subprocess.Popen(
                cmd_list,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
    except FileNotFoundError:
        log.error("Command not found: %s", cmd_list[0])
        return CommandResult(returncode=127, stderr=f"Command not found: {cmd_list[0]}")
    return CommandResult(returncode=0, pid=process.pid)
