"""Main entry point for caddyhost CLI"""

import argparse
import sys
import threading

from . import __version__
from .caddy_lifecycle import CaddyInstance, host_part, normalize_address
from .config import ProjectConfig, caddy_path
from .errors import (
    CaddyhostError,
    EngineExitedError,
    EngineLogError,
    EngineSpawnError,
    UnsupportedPlatformError,
)
from .hosts import HostMapper
from .installer import BinaryProvisioner
from .launcher import stop_process
from .output import print_error, print_info, print_success, print_warning
from .platform import current_arch, current_platform, is_admin, resolve_platform
from .structured_logging import setup_logging


def handle_download(args) -> bool:
    provisioner = BinaryProvisioner()
    path = provisioner.download() if args.force else provisioner.ensure_ready()
    print_success(f"Caddy ready at {path}")
    return True


def handle_check(args) -> bool:
    """Report platform support and whether the local binary works"""
    support = resolve_platform()
    print_success(f"Platform supported: {support.platform}/{support.arch}")

    path = caddy_path()
    if not path.exists():
        print_warning(f"Caddy not downloaded yet ({path})")
        print_info("Run: caddyhost download")
        return False

    if BinaryProvisioner(path).smoke_test():
        print_success(f"Caddy at {path} works")
        return True
    print_error(f"Caddy at {path} did not respond")
    return False


def handle_hosts(args) -> bool:
    mapper = HostMapper()
    if args.hosts_command == "add":
        mapper.bind(args.ip, args.host)
        print_success(f"Mapped {args.host} to {args.ip}")
    else:
        mapper.unbind(args.ip, args.host)
        print_success(f"Removed {args.host} -> {args.ip}")
    return True


def release_failed_run(instance: CaddyInstance, source: str, target: str, restore: bool) -> None:
    """Undo the hosts entry of a run that never became ready."""
    ip = host_part(normalize_address(source))
    host = host_part(target)
    hint = f"Remove it with: caddyhost hosts remove {ip} {host}"
    if not restore:
        print_info(f"Hosts entry for {host} kept. {hint}")
        return
    try:
        if instance.release_host(source, target):
            print_success("restore host success")
    except CaddyhostError as exc:
        print_error(f"restore host failed: {exc}")
        print_info(hint)


def wait_for_interrupt() -> None:
    """Block until Ctrl+C"""
    threading.Event().wait()


def handle_run(args) -> bool:
    """Run the reverse proxy until Ctrl+C, then tear it down"""
    project = ProjectConfig()
    source = args.source or project.source
    target = args.target or project.target
    if not source or not target:
        print_error("Both SOURCE and TARGET are required (or set them in caddyhost.yml)")
        return False

    options = project.run_options(
        restore=False if args.no_restore else None,
        base=args.base,
        show_engine_log=True if args.show_log else None,
    )

    if not is_admin():
        print_info("Editing the hosts file needs administrator/root privileges.")

    instance = CaddyInstance()
    try:
        teardown = instance.run(source, target, options)
    except (EngineSpawnError, EngineLogError, EngineExitedError) as exc:
        # EngineLogError leaves Caddy running
        process = getattr(exc, "process", None)
        if process is not None:
            stop_process(process)
        release_failed_run(instance, source, target, options.restore)
        raise
    host = target.split(":")[0]
    print_success(f"Serving https://{host}{options.base} -> {source}")
    print_info("Press Ctrl+C to stop")

    try:
        wait_for_interrupt()
    except KeyboardInterrupt:
        print()
    finally:
        teardown()
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="caddyhost",
        description="caddyhost - HTTPS for local dev servers via Caddy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Example:\n"
            "  caddyhost run 127.0.0.1:8080 myapp.test\n"
            "  caddyhost hosts remove 127.0.0.1 myapp.test"
        ),
    )
    parser.add_argument("--version", action="version", version=f"caddyhost {__version__}")
    parser.add_argument("--log-level", help="Log level (default: CADDYHOST_LOG_LEVEL or WARNING)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    download_parser = subparsers.add_parser("download", help="Download Caddy for this platform")
    download_parser.add_argument("--force", action="store_true", help="Download even if a working binary exists")

    subparsers.add_parser("check", help="Check platform support and the local Caddy binary")

    run_parser = subparsers.add_parser("run", help="Proxy https://TARGET to SOURCE")
    run_parser.add_argument("source", nargs="?", help="Upstream, e.g. 127.0.0.1:8080")
    run_parser.add_argument("target", nargs="?", help="Hostname, e.g. myapp.test")
    run_parser.add_argument("--no-restore", action="store_true", help="Keep the hosts entry on exit")
    run_parser.add_argument("--base", help="Path shown in the printed URL (default: /)")
    run_parser.add_argument("--show-log", action="store_true", help="Echo Caddy's log output")

    hosts_parser = subparsers.add_parser("hosts", help="Edit the hosts file")
    hosts_sub = hosts_parser.add_subparsers(dest="hosts_command", required=True)
    for name, help_text in (("add", "Map HOST to IP"), ("remove", "Remove the HOST -> IP mapping")):
        sub = hosts_sub.add_parser(name, help=help_text)
        sub.add_argument("ip")
        sub.add_argument("host")

    return parser


HANDLERS = {
    "download": handle_download,
    "check": handle_check,
    "run": handle_run,
    "hosts": handle_hosts,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)

    if not args.command:
        parser.print_help()
        return 1

    try:
        ok = HANDLERS[args.command](args)
    except CaddyhostError as exc:
        print_error(str(exc))
        if isinstance(exc, UnsupportedPlatformError):
            print_info(f"Detected {current_platform()}/{current_arch()}")
        return 1
    except KeyboardInterrupt:
        print_info("\nOperation cancelled by user")
        return 130
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
