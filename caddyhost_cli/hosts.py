"""Hosts file editing and DNS cache flushing"""

import logging
import os
import subprocess
from pathlib import Path

from .errors import DnsFlushError, HostMappingError
from .launcher import ProcessLauncher
from .platform import IS_WINDOWS
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("caddyhost.hosts")

LOOPBACK = "127.0.0.1"
LOOPBACK_ALIASES = ("localhost", "0.0.0.0")


def hosts_path() -> Path:
    """Get the OS hosts file path"""
    if IS_WINDOWS:
        system_root = os.environ.get("SystemRoot", r"C:\Windows")
        return Path(system_root) / "System32" / "drivers" / "etc" / "hosts"
    return Path("/etc/hosts")


def canonical_ip(ip: str) -> str:
    """'localhost' and '0.0.0.0' both mean this machine: 127.0.0.1"""
    return LOOPBACK if ip in LOOPBACK_ALIASES else ip


class HostsFile:
    """
    Line-preserving editor for a hosts file.

    Comments, blank lines and unrelated entries are written back untouched.
    A ``.bak`` copy is taken before every write.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else hosts_path()

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8", errors="replace").splitlines()

    def _write_lines(self, lines: list[str]) -> None:
        self.backup()
        self.path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def backup(self) -> Path | None:
        if not self.path.exists():
            return None
        backup_path = self.path.with_name(self.path.name + ".bak")
        backup_path.write_bytes(self.path.read_bytes())
        return backup_path

    @staticmethod
    def _parse(line: str) -> tuple[str, list[str], str] | None:
        """Split an entry into (ip, hosts, comment); None for comments/blanks."""
        content, sep, comment = line.partition("#")
        parts = content.split()
        if len(parts) < 2:
            return None
        return parts[0], parts[1:], sep + comment

    def get(self) -> list[tuple[str, str]]:
        """All (ip, host) pairs in the file."""
        pairs = []
        for line in self._read_lines():
            parsed = self._parse(line)
            if parsed:
                ip, names, _ = parsed
                pairs.extend((ip, name) for name in names)
        return pairs

    def has(self, ip: str, host: str) -> bool:
        return (ip, host) in self.get()

    def set(self, ip: str, host: str) -> bool:
        """Add ``ip host``. Returns False if the pair was already present."""
        if self.has(ip, host):
            return False
        lines = self._read_lines()
        lines.append(f"{ip} {host}")
        self._write_lines(lines)
        return True

    def remove(self, ip: str, host: str) -> bool:
        """Drop ``host`` from lines for ``ip``. Returns False if nothing matched."""
        lines = []
        removed = False
        for line in self._read_lines():
            parsed = self._parse(line)
            if parsed and parsed[0] == ip and host in parsed[1]:
                removed = True
                remaining = [name for name in parsed[1] if name != host]
                if remaining:
                    entry = " ".join([ip, *remaining])
                    lines.append(f"{entry} {parsed[2]}" if parsed[2] else entry)
                continue
            lines.append(line)
        if removed:
            self._write_lines(lines)
        return removed


class HostMapper:
    """
    Binds a hostname to a loopback IP in the hosts table, flushing the DNS
    cache after every change.

    ``created`` holds the pairs this instance actually added, so callers can
    leave pre-existing entries alone when restoring.
    """

    def __init__(self, hosts: HostsFile | None = None, launcher: ProcessLauncher | None = None):
        self.hosts = hosts or HostsFile()
        self.launcher = launcher or ProcessLauncher()
        self.created: set[tuple[str, str]] = set()

    def bind(self, ip: str, host: str) -> bool:
        ip = canonical_ip(ip)
        try:
            added = self.hosts.set(ip, host)
        except OSError as exc:
            logger.error("hosts set %s %s failed: %s", ip, host, exc)
            raise HostMappingError(exc) from exc
        if added:
            self.created.add((ip, host))
            logger.info("Added hosts entry: %s %s", ip, host)
        else:
            logger.debug("Hosts entry already exists: %s %s", ip, host)
        self.flush_dns()
        return True

    def unbind(self, ip: str, host: str) -> bool:
        ip = canonical_ip(ip)
        try:
            self.hosts.remove(ip, host)
        except OSError as exc:
            logger.error("hosts remove %s %s failed: %s", ip, host, exc)
            raise HostMappingError(exc) from exc
        self.created.discard((ip, host))
        logger.info("Removed hosts entry: %s %s", ip, host)
        self.flush_dns()
        return True

    def flush_dns(self) -> None:
        """ipconfig /flushdns on Windows, HUP to mDNSResponder elsewhere."""
        if IS_WINDOWS:
            cmd, args, elevated = "ipconfig", ["/flushdns"], False
        else:
            cmd, args, elevated = "killall", ["-HUP", "mDNSResponder"], True
        try:
            result = self.launcher.run(cmd, args, elevated=elevated, timeout=get_timeout("dns_flush"))
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("DNS flush failed: %s", exc)
            raise DnsFlushError(exc) from exc
        # A non-zero exit (no mDNSResponder on Linux) is not a launch failure
        if result.returncode != 0:
            logger.debug("DNS flush exited with %s: %s", result.returncode, (result.stderr or "").strip())
