"""Exceptions raised while provisioning and supervising the Caddy engine"""


class CaddyhostError(Exception):
    """Base class for every caddyhost failure."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class UnsupportedPlatformError(CaddyhostError):
    """No Caddy build is published for this OS/CPU pair."""

    def __init__(self, platform: str, arch: str):
        super().__init__(f"Platform not supported: {platform}/{arch}")
        self.platform = platform
        self.arch = arch


class DownloadError(CaddyhostError):
    """The binary download failed; any partial file is left on disk."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to download Caddy: {cause}", cause)


class SmokeTestSpawnError(CaddyhostError):
    """The local binary could not be launched at all."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to launch Caddy smoke test: {cause}", cause)


class HostMappingError(CaddyhostError):
    """The hosts table could not be updated."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to update hosts file: {cause}", cause)


class HostBindError(CaddyhostError):
    """Binding the target host did not report success."""


class DnsFlushError(CaddyhostError):
    """The DNS cache flush failed. The hosts mapping itself was already applied."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to flush DNS cache (mapping may not be visible yet): {cause}", cause)


class EngineLogError(CaddyhostError):
    """
    Caddy reported an error on stderr before it became ready.

    The engine process is still running; it is exposed as ``process`` so the
    caller can stop it.
    """

    def __init__(self, line: str, process=None):
        super().__init__(line)
        self.line = line
        self.process = process


class EngineExitedError(CaddyhostError):
    """Caddy closed its output streams before signalling readiness."""

    def __init__(self, returncode: int | None):
        super().__init__(f"Caddy exited before it was ready (exit code {returncode})")
        self.returncode = returncode


class EngineSpawnError(CaddyhostError):
    """The reverse proxy could not be launched (missing binary, missing sudo, permissions)."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to start Caddy: {cause}", cause)
