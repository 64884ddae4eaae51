"""
Caddy lifecycle management: provision, map the host, free ports, supervise.

Run flow (CaddyInstance.run):
- ensure a working Caddy binary (once per instance)
- map the target hostname to the source's loopback IP in the hosts file
- free port 443 (and 80 on Windows)
- spawn `caddy reverse-proxy --from <target> --to <source> --internal-certs`
- first stdout byte means ready: return a teardown callable
- an error line on stderr means failure: raise EngineLogError
"""

import json
import logging
import subprocess
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum

from .config import RunOptions
from .errors import EngineExitedError, EngineLogError, EngineSpawnError, HostBindError
from .hosts import HostMapper, canonical_ip
from .installer import READ_CHUNK, BinaryProvisioner
from .launcher import ProcessLauncher, stop_process
from .output import console, print_error, print_info, print_success
from .platform import IS_WINDOWS
from .ports import ensure_free
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("caddyhost.lifecycle")

HTTPS_PORT = 443
HTTP_PORT = 80

ERROR_MARKER = "Error:"

Teardown = Callable[[], None]


class SupervisorState(str, Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    BINDING_HOST = "binding_host"
    FREEING_PORTS = "freeing_ports"
    SPAWNING = "spawning"
    AWAITING_SIGNAL = "awaiting_signal"
    RUNNING = "running"
    FAILED = "failed"
    TEARING_DOWN = "tearing_down"


# ─────────────────────────────────────────────────────────────────────────────
# Engine log classification
# ─────────────────────────────────────────────────────────────────────────────


def has_error_marker(line: str) -> bool:
    """Plain-text Caddy errors, e.g. 'Error: loading initial config: ...'"""
    return ERROR_MARKER in line


def is_error_record(line: str) -> bool:
    """Structured Caddy log records with level == "error"."""
    try:
        record = json.loads(line)
    except ValueError:
        return False
    return isinstance(record, dict) and record.get("level") == "error"


# Checked in order; the marker wins over JSON parsing
ENGINE_ERROR_MATCHERS = (has_error_marker, is_error_record)


def is_engine_error(line: str) -> bool:
    """Classify one stripped stderr line. Unparseable lines are not errors."""
    if not line:
        return False
    return any(match(line) for match in ENGINE_ERROR_MATCHERS)


# ─────────────────────────────────────────────────────────────────────────────
# Address helpers
# ─────────────────────────────────────────────────────────────────────────────


def normalize_address(address: str) -> str:
    """Rewrite 0.0.0.0 / localhost to 127.0.0.1"""
    return address.replace("0.0.0.0", "127.0.0.1").replace("localhost", "127.0.0.1")


def host_part(address: str) -> str:
    """Text before the first ':'"""
    return address.split(":")[0]


def reverse_proxy_args(source: str, target_host: str) -> list[str]:
    return ["reverse-proxy", "--from", target_host, "--to", source, "--internal-certs"]


# ─────────────────────────────────────────────────────────────────────────────
# Supervised engine process
# ─────────────────────────────────────────────────────────────────────────────


class EngineSession:
    """
    Watches one Caddy child process.

    Reader threads drain stdout and stderr for the life of the process; the
    first qualifying event settles ``outcome`` (readiness or error), later
    events are only logged.
    """

    def __init__(self, process, show_log: bool = False, on_ready: Callable[[], Teardown] | None = None):
        self.process = process
        self.show_log = show_log
        self.on_ready = on_ready
        self.outcome: Future = Future()
        self._lock = threading.Lock()
        self._open_streams = 2

    def start(self) -> Future:
        for name, target in (("stdout", self._read_stdout), ("stderr", self._read_stderr)):
            thread = threading.Thread(target=target, name=f"caddy-{name}-{self.process.pid}", daemon=True)
            thread.start()
        return self.outcome

    def _settle(self, result=None, error: BaseException | None = None) -> bool:
        with self._lock:
            if self.outcome.done():
                return False
            if error is not None:
                self.outcome.set_exception(error)
            else:
                self.outcome.set_result(result)
            return True

    def _stream_closed(self) -> None:
        with self._lock:
            self._open_streams -= 1
            last = self._open_streams == 0
        if last:
            try:
                returncode = self.process.wait(timeout=1)
            except subprocess.TimeoutExpired:
                returncode = self.process.poll()
            self._settle(error=EngineExitedError(returncode))

    def _read_stdout(self) -> None:
        stream = self.process.stdout
        try:
            while True:
                data = stream.read(READ_CHUNK)
                if not data:
                    break
                if not self.outcome.done():
                    logger.info("Caddy: %s", data.decode(errors="replace").strip())
                    if self.on_ready is not None:
                        self._settle(self.on_ready())
                elif self.show_log:
                    console.print(data.decode(errors="replace").rstrip(), markup=False, highlight=False)
        except (OSError, ValueError) as exc:
            logger.debug("Caddy stdout closed: %s", exc)
        finally:
            self._stream_closed()

    def _read_stderr(self) -> None:
        try:
            for raw in self.process.stderr:
                line = raw.decode(errors="replace").strip()
                if not line:
                    continue
                if self.show_log:
                    console.print(line, markup=False, highlight=False)
                if is_engine_error(line):
                    logger.error("Caddy: %s", line)
                    self._settle(error=EngineLogError(line, self.process))
        except (OSError, ValueError) as exc:
            logger.debug("Caddy stderr closed: %s", exc)
        finally:
            self._stream_closed()


class CaddyInstance:
    """
    Runs a local HTTPS reverse proxy in front of a dev server.

    Usage:
        caddy = CaddyInstance()
        teardown = caddy.run("127.0.0.1:8080", "myapp.test")
        ...
        teardown()

    Construction starts a background smoke test of any existing binary; the
    first run() joins it and downloads Caddy only if it failed. Only one run()
    may be in flight per instance, and a previous session should be torn down
    before starting another.
    """

    def __init__(
        self,
        provisioner: BinaryProvisioner | None = None,
        hosts: HostMapper | None = None,
        launcher: ProcessLauncher | None = None,
    ):
        self.launcher = launcher or ProcessLauncher()
        self.provisioner = provisioner or BinaryProvisioner(launcher=self.launcher)
        self.hosts = hosts or HostMapper(launcher=self.launcher)
        self.state = SupervisorState.IDLE
        self._inited = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="caddyhost-check")
        self._initial_check: Future = self._executor.submit(self.provisioner.smoke_test)
        self._executor.shutdown(wait=False)

    def _transition(self, state: SupervisorState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state

    @property
    def inited(self) -> bool:
        """Join the construction-time smoke test; True once a binary is known good."""
        if self._inited:
            return True
        try:
            self._inited = bool(self._initial_check.result())
        except Exception as exc:
            logger.debug("Initial smoke test failed: %s", exc)
            self._inited = False
        return self._inited

    def init(self) -> None:
        """Ensure Caddy is downloaded and working."""
        self.provisioner.ensure_ready()
        self._inited = True

    def run(self, source: str, target: str, options: RunOptions | None = None) -> Teardown:
        """
        Start Caddy proxying https://<target host> to ``source``.

        Args:
            source: upstream like ``127.0.0.1:8080``
            target: hostname like ``test.abc.com``; a port, if given, is ignored
            options: RunOptions (restore / base / show_engine_log)

        Returns:
            teardown callable that removes the hosts entry (if restore) and
            stops Caddy

        Blocks until Caddy prints to stdout, bounded only by the "engine"
        timeout (none by default).

        Raises EngineSpawnError if Caddy cannot be launched. Failures after
        the hosts entry is written leave it in place; see release_host().
        """
        opts = options or RunOptions()
        source = normalize_address(source)
        source_host = host_part(source)
        target_host = host_part(target)

        try:
            if not self.inited:
                self._transition(SupervisorState.PROVISIONING)
                self.init()

            self._transition(SupervisorState.BINDING_HOST)
            if not self.hosts.bind(source_host, target_host):
                raise HostBindError("update host failed")
            owns_mapping = (canonical_ip(source_host), target_host) in self.hosts.created

            self._transition(SupervisorState.FREEING_PORTS)
            ensure_free(HTTPS_PORT, "tcp", self.launcher)
            if IS_WINDOWS:
                ensure_free(HTTP_PORT, "tcp", self.launcher)

            self._transition(SupervisorState.SPAWNING)
            try:
                process = self.launcher.spawn(
                    str(self.provisioner.path),
                    reverse_proxy_args(source, target_host),
                    elevated=not IS_WINDOWS,
                )
            except OSError as exc:
                logger.error("Starting %s failed: %s", self.provisioner.path, exc)
                raise EngineSpawnError(exc) from exc
        except Exception:
            self._transition(SupervisorState.FAILED)
            raise

        teardown = self._make_teardown(process, source_host, target_host, opts.restore, owns_mapping)
        session = EngineSession(process, show_log=opts.show_engine_log, on_ready=lambda: teardown)

        self._transition(SupervisorState.AWAITING_SIGNAL)
        try:
            result = session.start().result(timeout=get_timeout("engine"))
        except Exception:
            self._transition(SupervisorState.FAILED)
            raise

        self._transition(SupervisorState.RUNNING)
        logger.info("Serving https://%s%s -> %s", target_host, opts.base, source)
        return result

    def release_host(self, source: str, target: str) -> bool:
        """
        Remove the hosts entry a failed run() added for source/target.

        Entries this instance did not create are left alone. Returns True if
        an entry was removed.
        """
        ip = canonical_ip(host_part(normalize_address(source)))
        target_host = host_part(target)
        if (ip, target_host) not in self.hosts.created:
            return False
        self.hosts.unbind(ip, target_host)
        return True

    def _make_teardown(
        self, process, source_host: str, target_host: str, restore: bool, owns_mapping: bool
    ) -> Teardown:
        lock = threading.Lock()
        done = False

        def teardown() -> None:
            nonlocal done
            with lock:
                if done:
                    return
                done = True

            self._transition(SupervisorState.TEARING_DOWN)
            if restore and not owns_mapping:
                print_info(f"Leaving pre-existing hosts entry for {target_host}")
            elif restore:
                try:
                    self.hosts.unbind(source_host, target_host)
                    print_success("restore host success")
                except Exception as exc:
                    logger.error("Restoring hosts entry %s %s failed: %s", source_host, target_host, exc)
                    print_error("restore host failed")

            stop_process(process)
            self._transition(SupervisorState.IDLE)

        return teardown
