"""Tests for the port guard"""

import socket
import subprocess

import caddyhost_cli.ports as ports
from caddyhost_cli.ports import ensure_free, kill_port, try_port


class ScriptedLauncher:
    """Returns queued CompletedProcess results in order."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.ran = []

    def run(self, cmd, args, elevated=False, timeout=None):
        self.ran.append((cmd, list(args), elevated))
        returncode, stdout = self.outputs.pop(0) if self.outputs else (0, "")
        return subprocess.CompletedProcess([cmd, *args], returncode, stdout, "denied" if returncode else "")


def test_try_port_detects_listener():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        assert try_port(port) is True


def test_try_port_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    assert try_port(port) is False


def test_ensure_free_skips_kill_when_port_free(monkeypatch):
    killed = []
    monkeypatch.setattr(ports, "try_port", lambda port: False)
    monkeypatch.setattr(ports, "kill_port", lambda *a: killed.append(a))

    assert ensure_free(443) is False
    assert killed == []


def test_ensure_free_kills_owner(monkeypatch):
    killed = []
    monkeypatch.setattr(ports, "try_port", lambda port: True)
    monkeypatch.setattr(ports, "kill_port", lambda port, protocol, launcher: killed.append((port, protocol)))

    assert ensure_free(443) is True
    assert killed == [(443, "tcp")]


def test_kill_port_unix(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", False)
    monkeypatch.setattr(ports.shutil, "which", lambda name: "/usr/sbin/lsof")
    launcher = ScriptedLauncher((0, "123\n456\n123\n"), (0, ""), (0, ""))

    assert kill_port(443, "tcp", launcher) == [123, 456]
    assert launcher.ran[0] == ("lsof", ["-t", "-iTCP:443", "-sTCP:LISTEN"], True)
    assert launcher.ran[1:] == [("kill", ["-9", "123"], True), ("kill", ["-9", "456"], True)]


def test_kill_port_failure_is_logged_not_raised(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", False)
    monkeypatch.setattr(ports.shutil, "which", lambda name: "/usr/sbin/lsof")
    launcher = ScriptedLauncher((0, "789\n"), (1, ""))

    assert kill_port(80, "tcp", launcher) == []


def test_kill_port_without_lsof(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", False)
    monkeypatch.setattr(ports.shutil, "which", lambda name: None)
    launcher = ScriptedLauncher()

    assert kill_port(443, "tcp", launcher) == []
    assert launcher.ran == []


def test_kill_port_windows(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", True)
    launcher = ScriptedLauncher((0, "[\r\n  4321\r\n]"), (0, "SUCCESS"))

    assert kill_port(80, "tcp", launcher) == [4321]
    assert launcher.ran[0][0] == "powershell"
    assert "Get-NetTCPConnection -LocalPort 80" in launcher.ran[0][1][-1]
    assert launcher.ran[1] == ("taskkill", ["/F", "/PID", "4321"], True)


def test_kill_port_windows_single_value(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", True)
    launcher = ScriptedLauncher((0, "4321"), (0, "SUCCESS"))

    assert kill_port(443, "tcp", launcher) == [4321]


def test_kill_port_lookup_timeout_is_logged_not_raised(monkeypatch):
    monkeypatch.setattr(ports, "IS_WINDOWS", False)
    monkeypatch.setattr(ports.shutil, "which", lambda name: "/usr/sbin/lsof")

    class HangingLauncher:
        def run(self, cmd, args, elevated=False, timeout=None):
            raise subprocess.TimeoutExpired(cmd, timeout)

    assert kill_port(443, "tcp", HangingLauncher()) == []
