"""Tests for Caddy binary provisioning"""

import gzip
import io
import os
import sys
from unittest.mock import MagicMock

import httpx
import pytest

import caddyhost_cli.installer as installer
from caddyhost_cli.errors import DownloadError, SmokeTestSpawnError, UnsupportedPlatformError
from caddyhost_cli.installer import BinaryProvisioner, download_percent, proxy_mounts
from caddyhost_cli.platform import PlatformSupportEntry, resolve_platform


class FakeProcess:
    def __init__(self, stdout=b""):
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(b"")
        self.pid = 4242
        self.returncode = 0 if not stdout else None
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout=None):
        return self.returncode

    def kill(self):
        self.returncode = -9


class FakeLauncher:
    def __init__(self, process=None, error=None):
        self.process = process
        self.error = error
        self.spawned = []

    def spawn(self, cmd, args, elevated=False):
        self.spawned.append((cmd, list(args), elevated))
        if self.error:
            raise self.error
        return self.process


class BrokenStream(httpx.SyncByteStream):
    def __iter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset")


@pytest.fixture
def linux_amd64(monkeypatch):
    monkeypatch.setattr(installer, "resolve_platform", lambda: PlatformSupportEntry("linux", "amd64"))
    monkeypatch.delenv("CADDYHOST_DOWNLOAD_URL", raising=False)


def _provisioner(tmp_path, handler=None, launcher=None, progress=None):
    transport = httpx.MockTransport(handler) if handler else None
    return BinaryProvisioner(
        path=tmp_path / "bin" / "caddy",
        launcher=launcher or FakeLauncher(),
        transport=transport,
        on_progress=progress.append if progress is not None else (lambda _p: None),
    )


# ─────────────────────────────────────────────────────────────────────────────
# smoke_test
# ─────────────────────────────────────────────────────────────────────────────


def test_smoke_test_missing_file_is_false(tmp_path):
    launcher = FakeLauncher()
    provisioner = _provisioner(tmp_path, launcher=launcher)

    assert provisioner.smoke_test() is False
    assert launcher.spawned == []


def test_smoke_test_any_stdout_is_true(tmp_path):
    launcher = FakeLauncher(FakeProcess(b"Caddy is an extensible server platform.\n"))
    provisioner = _provisioner(tmp_path, launcher=launcher)
    provisioner.path.parent.mkdir(parents=True)
    provisioner.path.write_bytes(b"binary")

    assert provisioner.smoke_test() is True
    cmd, args, elevated = launcher.spawned[0]
    assert cmd == str(provisioner.path)
    assert args == []
    assert elevated is (sys.platform != "win32")
    assert launcher.process.terminated


def test_smoke_test_silent_exit_is_false(tmp_path):
    launcher = FakeLauncher(FakeProcess(b""))
    provisioner = _provisioner(tmp_path, launcher=launcher)
    provisioner.path.parent.mkdir(parents=True)
    provisioner.path.write_bytes(b"binary")

    assert provisioner.smoke_test() is False


def test_smoke_test_spawn_error_propagates(tmp_path):
    launcher = FakeLauncher(error=PermissionError("sudo: not permitted"))
    provisioner = _provisioner(tmp_path, launcher=launcher)
    provisioner.path.parent.mkdir(parents=True)
    provisioner.path.write_bytes(b"binary")

    with pytest.raises(SmokeTestSpawnError) as excinfo:
        provisioner.smoke_test()
    assert isinstance(excinfo.value.__cause__, PermissionError)


@pytest.mark.skipif(sys.platform == "win32", reason="Unix permissions test")
def test_smoke_test_sets_executable_bit(tmp_path):
    launcher = FakeLauncher(FakeProcess(b"usage"))
    provisioner = _provisioner(tmp_path, launcher=launcher)
    provisioner.path.parent.mkdir(parents=True)
    provisioner.path.write_bytes(b"binary")
    provisioner.path.chmod(0o644)

    provisioner.smoke_test()
    assert os.access(provisioner.path, os.X_OK)


# ─────────────────────────────────────────────────────────────────────────────
# ensure_ready
# ─────────────────────────────────────────────────────────────────────────────


def test_ensure_ready_skips_download_when_binary_works(tmp_path):
    provisioner = _provisioner(tmp_path)
    provisioner.smoke_test = MagicMock(return_value=True)
    provisioner.download = MagicMock()

    assert provisioner.ensure_ready() == provisioner.path
    assert provisioner.ensure_ready() == provisioner.path
    provisioner.download.assert_not_called()


def test_ensure_ready_downloads_when_smoke_test_fails(tmp_path):
    provisioner = _provisioner(tmp_path)
    provisioner.smoke_test = MagicMock(return_value=False)
    provisioner.download = MagicMock(return_value=provisioner.path)

    assert provisioner.ensure_ready() == provisioner.path
    provisioner.download.assert_called_once()


# ─────────────────────────────────────────────────────────────────────────────
# download
# ─────────────────────────────────────────────────────────────────────────────


def test_download_streams_binary_to_disk(tmp_path, linux_amd64):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, content=b"caddy-binary-bytes")

    progress = []
    provisioner = _provisioner(tmp_path, handler, progress=progress)

    path = provisioner.download()

    assert path == provisioner.path
    assert path.read_bytes() == b"caddy-binary-bytes"
    assert requested == ["https://caddyserver.com/api/download?os=linux&arch=amd64"]
    assert progress[-1] == 100.0
    assert all(0 <= p <= 100 for p in progress)
    if sys.platform != "win32":
        assert os.access(path, os.X_OK)


def test_download_progress_stays_in_range_for_gzip_body(tmp_path, linux_amd64):
    binary = b"\x7fELF" + b"\x00" * 200_000
    body = gzip.compress(binary)

    def handler(request):
        return httpx.Response(200, content=body, headers={"Content-Encoding": "gzip"})

    progress = []
    provisioner = _provisioner(tmp_path, handler, progress=progress)

    assert provisioner.download().read_bytes() == binary
    assert max(progress) <= 100
    assert progress[-1] == 100.0


def test_download_percent():
    assert download_percent(50, 200) == 25.0
    assert download_percent(10, 0) == 0.0
    assert download_percent(300, 200) == 100.0


def test_download_unsupported_platform_makes_no_request(tmp_path, monkeypatch):
    monkeypatch.setattr(installer, "resolve_platform", lambda: resolve_platform("plan9", "mips"))
    handler = MagicMock()
    provisioner = _provisioner(tmp_path, handler)

    with pytest.raises(UnsupportedPlatformError):
        provisioner.download()
    handler.assert_not_called()


def test_download_http_error_status(tmp_path, linux_amd64):
    provisioner = _provisioner(tmp_path, lambda request: httpx.Response(404, content=b"no such build"))

    with pytest.raises(DownloadError):
        provisioner.download()


def test_download_stream_error_leaves_partial_file(tmp_path, linux_amd64):
    provisioner = _provisioner(tmp_path, lambda request: httpx.Response(200, stream=BrokenStream()))

    with pytest.raises(DownloadError) as excinfo:
        provisioner.download()

    assert isinstance(excinfo.value.__cause__, httpx.ReadError)
    assert provisioner.path.read_bytes() == b"partial"


def test_download_after_failure_does_not_reuse_partial_file(tmp_path, linux_amd64):
    broken = _provisioner(tmp_path, lambda request: httpx.Response(200, stream=BrokenStream()))
    with pytest.raises(DownloadError):
        broken.download()

    good = _provisioner(tmp_path, lambda request: httpx.Response(200, content=b"fresh"))
    assert good.download().read_bytes() == b"fresh"


def test_download_url_override(tmp_path, linux_amd64, monkeypatch):
    monkeypatch.setenv("CADDYHOST_DOWNLOAD_URL", "https://mirror.local/{platform}/{arch}/caddy")
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, content=b"x")

    _provisioner(tmp_path, handler).download()
    assert requested == ["https://mirror.local/linux/amd64/caddy"]


# ─────────────────────────────────────────────────────────────────────────────
# proxies
# ─────────────────────────────────────────────────────────────────────────────


def test_proxy_mounts_empty_without_env(monkeypatch):
    for name in ("HTTP_PROXY", "http_proxy", "HTTPS_PROXY", "https_proxy"):
        monkeypatch.delenv(name, raising=False)
    assert proxy_mounts() == {}


def test_proxy_mounts_per_scheme(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("http_proxy", "http://proxy.corp:3128")
    monkeypatch.setenv("https_proxy", "http://proxy.corp:3129")

    mounts = proxy_mounts()
    assert set(mounts) == {"http://", "https://"}
    assert all(isinstance(t, httpx.HTTPTransport) for t in mounts.values())


def test_download_wrapper_force(monkeypatch, tmp_path):
    calls = []
    monkeypatch.setattr(BinaryProvisioner, "download", lambda self: calls.append("download") or self.path)
    monkeypatch.setattr(BinaryProvisioner, "ensure_ready", lambda self: calls.append("ensure") or self.path)
    monkeypatch.setenv("CADDYHOST_HOME", str(tmp_path))

    installer.download()
    installer.download(force=True)
    assert calls == ["ensure", "download"]


def test_ensure_ready_propagates_launch_failure(tmp_path):
    launcher = FakeLauncher(error=FileNotFoundError("sudo"))
    provisioner = _provisioner(tmp_path, launcher=launcher)
    provisioner.path.parent.mkdir(parents=True)
    provisioner.path.write_bytes(b"binary")

    with pytest.raises(SmokeTestSpawnError):
        provisioner.ensure_ready()
