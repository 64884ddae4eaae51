"""
caddyhost - HTTPS for local dev servers
Downloads Caddy, maps a hostname in the hosts file and supervises a
`caddy reverse-proxy` in front of your app
"""

__version__ = "0.1.0"

from .caddy_lifecycle import CaddyInstance, SupervisorState
from .config import ProjectConfig, RunOptions
from .errors import (
    CaddyhostError,
    DnsFlushError,
    DownloadError,
    EngineExitedError,
    EngineLogError,
    EngineSpawnError,
    HostBindError,
    HostMappingError,
    SmokeTestSpawnError,
    UnsupportedPlatformError,
)
from .installer import BinaryProvisioner, download

__all__ = [
    "CaddyInstance",
    "SupervisorState",
    "RunOptions",
    "ProjectConfig",
    "BinaryProvisioner",
    "download",
    "CaddyhostError",
    "UnsupportedPlatformError",
    "DownloadError",
    "SmokeTestSpawnError",
    "HostMappingError",
    "HostBindError",
    "DnsFlushError",
    "EngineLogError",
    "EngineExitedError",
    "EngineSpawnError",
    "__version__",
]
