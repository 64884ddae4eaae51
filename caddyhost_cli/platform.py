"""Platform detection and the Caddy release-asset platform table"""

import os
import platform
import sys
from dataclasses import dataclass

from .errors import UnsupportedPlatformError

IS_WINDOWS = platform.system() == "Windows"
IS_MACOS = platform.system() == "Darwin"
IS_LINUX = platform.system() == "Linux"


@dataclass(frozen=True)
class PlatformSupportEntry:
    """A (platform, arch) pair the download API serves a build for."""

    platform: str
    arch: str


SUPPORT_LIST: tuple[PlatformSupportEntry, ...] = (
    PlatformSupportEntry("darwin", "amd64"),
    PlatformSupportEntry("darwin", "arm64"),
    PlatformSupportEntry("linux", "amd64"),
    PlatformSupportEntry("linux", "arm64"),
    PlatformSupportEntry("linux", "armv7"),
    PlatformSupportEntry("windows", "amd64"),
    PlatformSupportEntry("windows", "arm64"),
)

# Runtime identifiers -> release-asset naming
PLATFORM_ALIASES = {"win32": "windows"}
ARCH_ALIASES = {
    "x64": "amd64",
    "x86_64": "amd64",
    "aarch64": "arm64",
    "armv7l": "armv7",
}


def current_platform() -> str:
    return PLATFORM_ALIASES.get(sys.platform, sys.platform)


def current_arch() -> str:
    machine = platform.machine().lower()
    return ARCH_ALIASES.get(machine, machine)


def resolve_platform(system: str | None = None, arch: str | None = None) -> PlatformSupportEntry:
    """
    Map OS/CPU identifiers onto an entry of SUPPORT_LIST.

    Args:
        system: OS identifier (defaults to sys.platform)
        arch: CPU identifier (defaults to platform.machine())

    Raises:
        UnsupportedPlatformError: no exact (platform, arch) match
    """
    name = PLATFORM_ALIASES.get(system, system) if system else current_platform()
    machine = ARCH_ALIASES.get(arch.lower(), arch.lower()) if arch else current_arch()

    for entry in SUPPORT_LIST:
        if entry.platform == name and entry.arch == machine:
            return entry
    raise UnsupportedPlatformError(name, machine)


def is_admin() -> bool:
    """Check if running with administrator/root privileges"""
    if not IS_WINDOWS:
        return os.geteuid() == 0 if hasattr(os, "geteuid") else False
    try:
        import ctypes

        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False
