"""
Rich-powered console output for caddyhost

Status lines and the download progress bar.
"""

import sys

from rich.console import Console

# force_terminal=None respects TTY detection
console = Console(force_terminal=None, legacy_windows=True)

# ASCII-safe icons for non-TTY output
_USE_ASCII = not sys.stdout.isatty()

PROGRESS_WIDTH = 30


def print_success(message: str):
    """Print a success message"""
    icon = "+" if _USE_ASCII else "✓"
    console.print(f"[green]{icon}[/green] {message}")


def print_error(message: str):
    """Print an error message"""
    icon = "x" if _USE_ASCII else "✗"
    console.print(f"[red]{icon}[/red] {message}", style="red")


def print_warning(message: str):
    """Print a warning message"""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str):
    """Print an info message"""
    icon = "i" if _USE_ASCII else "ℹ"
    console.print(f"[blue]{icon}[/blue] {message}")


def progress_bar(percent: float, width: int = PROGRESS_WIDTH) -> str:
    """Render a percentage (0-100) as a fixed-width text bar."""
    percent = max(0.0, min(100.0, percent))
    filled = int(width * percent / 100)
    return "[" + "#" * filled + "-" * (width - filled) + f"] {percent:5.1f}%"


def print_download_progress(percent: float):
    """Redraw the download progress line in place"""
    console.print(f"[cyan]Downloading Caddy[/cyan] {progress_bar(percent)}", end="\r", markup=True, highlight=False)


def print_download_done():
    """Finish the progress line"""
    console.print(f"[cyan]Downloading Caddy[/cyan] {progress_bar(100)}", highlight=False)
