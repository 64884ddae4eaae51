"""Freeing the ports Caddy needs before it starts"""

import json
import logging
import shutil
import socket
import subprocess

from .launcher import ProcessLauncher
from .platform import IS_WINDOWS
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("caddyhost.ports")


def try_port(port: int, host: str = "127.0.0.1") -> bool:
    """True if something is accepting connections on host:port"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(1.0)
        return s.connect_ex((host, port)) == 0


def get_port_pids(port: int, protocol: str = "tcp", launcher: ProcessLauncher | None = None) -> list[int]:
    """PIDs owning a local port."""
    launcher = launcher or ProcessLauncher()
    if IS_WINDOWS:
        return _get_port_pids_windows(port, protocol, launcher)
    return _get_port_pids_unix(port, protocol, launcher)


def _parse_pids(output: str) -> list[int]:
    pids = []
    for token in output.split():
        try:
            pid = int(token)
        except ValueError:
            continue
        if pid > 0 and pid not in pids:
            pids.append(pid)
    return pids


def _get_port_pids_windows(port: int, protocol: str, launcher: ProcessLauncher) -> list[int]:
    """Port owners on Windows using PowerShell."""
    if protocol == "udp":
        query = f"Get-NetUDPEndpoint -LocalPort {port} -ErrorAction SilentlyContinue"
    else:
        query = f"Get-NetTCPConnection -LocalPort {port} -State Listen -ErrorAction SilentlyContinue"
    ps_cmd = f"@({query} | Select-Object -ExpandProperty OwningProcess) | ConvertTo-Json"
    try:
        result = launcher.run("powershell", ["-NoProfile", "-Command", ps_cmd], timeout=get_timeout("port_owner"))
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Port owner lookup for %s failed: %s", port, exc)
        return []
    if not result.stdout.strip():
        return []
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return []
    values = data if isinstance(data, list) else [data]
    return _parse_pids(" ".join(str(v) for v in values))


def _get_port_pids_unix(port: int, protocol: str, launcher: ProcessLauncher) -> list[int]:
    """Port owners on Unix-like systems using lsof."""
    if not shutil.which("lsof"):
        logger.warning("lsof not found, cannot look up owner of port %s", port)
        return []
    args = ["-t", f"-i{protocol.upper()}:{port}"]
    if protocol == "tcp":
        args.append("-sTCP:LISTEN")
    try:
        result = launcher.run("lsof", args, elevated=True, timeout=get_timeout("port_owner"))
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Port owner lookup for %s failed: %s", port, exc)
        return []
    return _parse_pids(result.stdout)


def kill_port(port: int, protocol: str = "tcp", launcher: ProcessLauncher | None = None) -> list[int]:
    """
    Force-kill whatever owns a port. No graceful shutdown.

    Returns the PIDs a kill was sent to. Failures are logged, not raised.
    """
    launcher = launcher or ProcessLauncher()
    killed = []
    for pid in get_port_pids(port, protocol, launcher):
        if IS_WINDOWS:
            cmd, args = "taskkill", ["/F", "/PID", str(pid)]
        else:
            cmd, args = "kill", ["-9", str(pid)]
        try:
            result = launcher.run(cmd, args, elevated=True, timeout=get_timeout("port_kill"))
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Failed to kill PID %s on port %s: %s", pid, port, exc)
            continue
        if result.returncode != 0:
            logger.warning("Failed to kill PID %s on port %s: %s", pid, port, (result.stderr or "").strip())
            continue
        logger.info("Killed PID %s holding %s port %s", pid, protocol, port)
        killed.append(pid)
    return killed


def ensure_free(port: int, protocol: str = "tcp", launcher: ProcessLauncher | None = None) -> bool:
    """
    Make sure nothing is listening on ``port``.

    Returns True if the port was busy and a kill was attempted.
    """
    if not try_port(port):
        return False
    logger.info("Port %s is in use, freeing it", port)
    kill_port(port, protocol, launcher)
    return True
