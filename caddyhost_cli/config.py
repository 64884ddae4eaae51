"""Configuration: data paths, download URL, run options and caddyhost.yml"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from .output import print_error
from .platform import IS_WINDOWS

logger = logging.getLogger("caddyhost.config")

DOWNLOAD_URL_TEMPLATE = "https://caddyserver.com/api/download?os={platform}&arch={arch}"
PROJECT_FILENAMES = ("caddyhost.yml", "caddyhost.yaml")


def caddyhost_home() -> Path:
    """Data directory, overridable with CADDYHOST_HOME."""
    env_path = os.getenv("CADDYHOST_HOME")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".caddyhost"


def caddy_path() -> Path:
    """Location of the managed Caddy binary."""
    return caddyhost_home() / "bin" / ("caddy.exe" if IS_WINDOWS else "caddy")


def download_url(platform: str, arch: str) -> str:
    template = os.getenv("CADDYHOST_DOWNLOAD_URL") or DOWNLOAD_URL_TEMPLATE
    return template.format(platform=platform, arch=arch)


@dataclass
class RunOptions:
    """Per-run settings for CaddyInstance.run()."""

    restore: bool = True
    base: str = "/"
    show_engine_log: bool = False


class ProjectConfig:
    """
    Per-project caddyhost.yml defaults for the CLI.

    Schema:
        source: str           # upstream, e.g. 127.0.0.1:8080
        target: str           # hostname to serve over HTTPS
        restore: bool         # remove the hosts entry on exit (default: true)
        base: str             # path appended to the printed URL (default: /)
        show_engine_log: bool # echo Caddy's log (default: false)
    """

    def __init__(self, start_path: Path | None = None):
        self.start_path = Path(start_path or os.getcwd()).resolve()
        self.config_file: Path | None = None
        self.config: dict = {}
        self._find_and_load()

    def _find_and_load(self):
        """Search for caddyhost.yml in current and parent directories"""
        current = self.start_path

        for _ in range(10):
            for filename in PROJECT_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    self.config_file = config_path
                    self._load_yaml()
                    return

            parent = current.parent
            if parent == current:
                break
            current = parent

    def _load_yaml(self):
        try:
            with open(self.config_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            print_error(f"Failed to load {self.config_file}: {e}")
            logger.warning("Ignoring unreadable project file %s: %s", self.config_file, e)
            return

        if not isinstance(data, dict):
            print_error(f"Failed to load {self.config_file}: expected a mapping")
            return
        self.config = data

    def exists(self) -> bool:
        return self.config_file is not None

    @property
    def source(self) -> str | None:
        value = self.config.get("source")
        return str(value) if value is not None else None

    @property
    def target(self) -> str | None:
        value = self.config.get("target")
        return str(value) if value is not None else None

    def run_options(self, **overrides) -> RunOptions:
        """Build RunOptions from the file, with non-None overrides taking precedence."""
        known = {f.name for f in fields(RunOptions)}
        values = {k: v for k, v in self.config.items() if k in known}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunOptions(**values)
