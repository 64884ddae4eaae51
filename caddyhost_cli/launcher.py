"""
Process launching with a single elevation policy.

Everything caddyhost starts (the Caddy engine, the DNS flush, the port
kill helpers) goes through a ProcessLauncher so that the "sudo on Unix,
plain on Windows" rule lives in one place and tests can substitute a fake.
"""

import logging
import subprocess

from .platform import IS_WINDOWS
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("caddyhost.launcher")


class ProcessLauncher:
    """Starts child processes, prefixing ``sudo`` for elevated calls on Unix."""

    def __init__(self, sudo: str = "sudo"):
        self.sudo = sudo

    def command(self, cmd: str, args: list[str], elevated: bool = False) -> list[str]:
        argv = [cmd, *args]
        if elevated and not IS_WINDOWS:
            argv = [self.sudo, *argv]
        return argv

    def spawn(self, cmd: str, args: list[str], elevated: bool = False) -> subprocess.Popen:
        """
        Start a long-running process with unbuffered stdout/stderr pipes.

        Raises OSError if the executable (or sudo) cannot be started.
        """
        argv = self.command(cmd, args, elevated)
        logger.debug("Spawning: %s", " ".join(argv))
        return subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=0,
            creationflags=subprocess.CREATE_NO_WINDOW if IS_WINDOWS else 0,
        )

    def run(
        self, cmd: str, args: list[str], elevated: bool = False, timeout: float | None = None
    ) -> subprocess.CompletedProcess:
        """
        Run a short helper command to completion and capture its output.

        Raises OSError if it cannot be started and subprocess.TimeoutExpired
        if it outlives ``timeout``.
        """
        argv = self.command(cmd, args, elevated)
        logger.debug("Running: %s", " ".join(argv))
        return subprocess.run(argv, capture_output=True, text=True, check=False, timeout=timeout)


def stop_process(proc) -> None:
    """Terminate a child and reap it, escalating to kill if it ignores SIGTERM."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=get_timeout("engine_stop"))
    except subprocess.TimeoutExpired:
        logger.warning("Process %s ignored terminate, killing", proc.pid)
        proc.kill()
        proc.wait()
