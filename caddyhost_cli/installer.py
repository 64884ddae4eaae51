"""
Caddy binary provisioning.

Keeps a working Caddy executable at config.caddy_path():
- fast path: smoke-test the existing binary
- otherwise download the build matching this OS/CPU from the Caddy
  download API, stream it to disk with progress, mark it executable
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

import httpx

from . import config
from .errors import DownloadError, SmokeTestSpawnError
from .launcher import ProcessLauncher, stop_process
from .output import print_download_done, print_download_progress
from .platform import IS_WINDOWS, resolve_platform

logger = logging.getLogger("caddyhost.installer")

READ_CHUNK = 4096

ProgressCallback = Callable[[float], None]


def proxy_mounts() -> dict[str, httpx.HTTPTransport]:
    """Per-scheme proxy transports from HTTP(S)_PROXY / http(s)_proxy."""
    http_proxy = os.environ.get("HTTP_PROXY") or os.environ.get("http_proxy")
    https_proxy = os.environ.get("HTTPS_PROXY") or os.environ.get("https_proxy")

    mounts: dict[str, httpx.HTTPTransport] = {}
    if http_proxy:
        mounts["http://"] = httpx.HTTPTransport(proxy=http_proxy)
    if https_proxy:
        mounts["https://"] = httpx.HTTPTransport(proxy=https_proxy)
    return mounts


def download_percent(received: int, total: int) -> float:
    """Percentage in [0, 100]; 0.0 while the total size is unknown."""
    if not total:
        return 0.0
    return min(100.0, received * 100 / total)


def make_executable(path: Path) -> None:
    """chmod 755 (Windows has no executable bit)"""
    if IS_WINDOWS:
        return
    os.chmod(path, 0o755)


class BinaryProvisioner:
    """
    Ensures a usable Caddy executable exists locally.

    Usage:
        provisioner = BinaryProvisioner()
        path = provisioner.ensure_ready()
    """

    def __init__(
        self,
        path: Path | None = None,
        launcher: ProcessLauncher | None = None,
        transport: httpx.BaseTransport | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.path = Path(path) if path else config.caddy_path()
        self.launcher = launcher or ProcessLauncher()
        self.transport = transport
        self.on_progress = on_progress or print_download_progress

    def ensure_ready(self) -> Path:
        """Return the binary path, downloading only if the smoke test fails."""
        if self.smoke_test():
            logger.debug("Caddy binary at %s passed smoke test", self.path)
            return self.path
        return self.download()

    def smoke_test(self) -> bool:
        """
        Launch the binary without arguments and wait for any stdout.

        Returns False if the file is missing or the process exits without
        printing. Launch failures raise SmokeTestSpawnError. This starts a
        real process (under sudo on Unix) every time.
        """
        if not self.path.exists():
            return False

        make_executable(self.path)
        try:
            proc = self.launcher.spawn(str(self.path), [], elevated=not IS_WINDOWS)
        except OSError as exc:
            raise SmokeTestSpawnError(exc) from exc

        try:
            data = proc.stdout.read(READ_CHUNK)
        finally:
            stop_process(proc)
        return bool(data)

    def _client(self) -> httpx.Client:
        if self.transport is not None:
            return httpx.Client(transport=self.transport, follow_redirects=True)
        return httpx.Client(mounts=proxy_mounts(), trust_env=False, follow_redirects=True, timeout=None)

    def download(self) -> Path:
        """
        Download the Caddy build for this platform to self.path.

        Raises:
            UnsupportedPlatformError: before any network or disk activity
            DownloadError: network/stream failure; the partial file stays
        """
        support = resolve_platform()
        url = config.download_url(support.platform, support.arch)

        if self.path.exists():
            self.path.unlink()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Downloading %s to %s", url, self.path)
        try:
            with self._client() as client, client.stream("GET", url) as response:
                response.raise_for_status()
                # Content-Length counts bytes on the wire, which differs from
                # the decoded size when the body is gzip/deflate encoded
                total = int(response.headers.get("Content-Length") or 0)
                with open(self.path, "wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
                        self.on_progress(download_percent(response.num_bytes_downloaded, total))
        except (httpx.HTTPError, OSError) as exc:
            logger.error("Download from %s failed: %s", url, exc)
            raise DownloadError(exc) from exc

        self.on_progress(100.0)
        if self.on_progress is print_download_progress:
            print_download_done()

        make_executable(self.path)
        return self.path


def download(force: bool = False) -> Path:
    """
    Make sure Caddy is available and return its path.

    With ``force`` the binary is always downloaded again.
    """
    provisioner = BinaryProvisioner()
    if force:
        return provisioner.download()
    return provisioner.ensure_ready()
