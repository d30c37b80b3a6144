"""Output formatting with strict stdout/stderr discipline.

Follows `clig.dev <https://clig.dev/>`_ conventions:

* **stdout** -- primary data only (credentials, configuration values).
* **stderr** -- all diagnostics (progress, status, warnings, errors).
* **TTY detection** -- Rich formatting when stdout is an interactive
  terminal, plain text when piped.
* **Colour control** -- respects ``NO_COLOR``, ``TERM=dumb``, and the
  ``--no-color`` CLI flag.

Tokens are masked on output unless the caller explicitly asks to reveal
them; see :func:`mask_secret`.

The module exposes an :class:`OutputManager` created once in
:func:`~loopauth.app.main_callback` and installed via :func:`set_output`,
plus module-level helpers (:func:`info`, :func:`error`, ...) that delegate
to the global instance.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from loopauth.models import AuthorizationResult, Credential

_MASK_PREFIX = 10


class OutputFormat(str, Enum):
    """Supported output formats. ``AUTO`` resolves to ``RICH`` on a TTY."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def mask_secret(value: str, reveal: bool = False) -> str:
    """Return the first characters of *value* followed by ``(...)``.

    Args:
        value: The secret to display.
        reveal: Return *value* unchanged.
    """
    if reveal or not value:
        return value
    return f"{value[:_MASK_PREFIX]}(...)"


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


class OutputManager:
    """Central manager for all CLI output.

    Args:
        format: Desired output format. ``AUTO`` resolves based on TTY
            detection.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential informational messages on stderr.
        verbose: Enable debug-level messages on stderr.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            self._format = (
                OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
            )
        else:
            self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_data(self, text: str) -> None:
        """Print raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    def print_mapping(self, data: dict[str, Any], title: Optional[str] = None) -> None:
        """Print a flat key/value mapping in the active format.

        * **JSON** -- the mapping as an indented JSON object.
        * **Plain** -- ``key<TAB>value`` lines.
        * **Rich** -- a two-column table.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))
        elif self._format == OutputFormat.PLAIN:
            for key, value in data.items():
                self.print_data(f"{key}\t{'' if value is None else value}")
        else:
            table = Table(title=title, show_header=False, box=None, padding=(0, 2))
            table.add_column(style="bold cyan")
            table.add_column()
            for key, value in data.items():
                table.add_row(key, "-" if value is None else str(value))
            self._stdout.print(table)

    def print_credential(self, credential: Credential, reveal: bool = False) -> None:
        """Print a successful credential; tokens are masked unless *reveal*."""
        if self._format == OutputFormat.JSON:
            data: dict[str, Any] = {
                "access_token": mask_secret(credential.access_token, reveal),
                "refresh_token": mask_secret(credential.refresh_token, reveal),
                "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
                "refresh_expires_at": (
                    credential.refresh_expires_at.isoformat()
                    if credential.refresh_expires_at
                    else None
                ),
            }
        else:
            data = {
                "Access token": mask_secret(credential.access_token, reveal),
                "Expires": _format_time(credential.expires_at),
                "Refresh token": mask_secret(credential.refresh_token, reveal) or "-",
                "Refresh expires": _format_time(credential.refresh_expires_at),
            }
        self.print_mapping(data, title="Credential")

    def print_authorization(self, result: AuthorizationResult) -> None:
        """Report a successful authorization code on stderr (always masked)."""
        self.success(f"Authorization code: {mask_secret(result.code)}")

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        """Informational message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._emit(message, None)

    def success(self, message: str) -> None:
        """Green success message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._emit(message, "green")

    def warning(self, message: str) -> None:
        """Yellow warning. NOT suppressed by ``--quiet``."""
        if self._no_color:
            print(f"Warning: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Bold-red error. Never suppressed."""
        if self._no_color:
            print(f"Error: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[bold red]Error:[/bold red] {message}")

    def debug(self, message: str) -> None:
        """Debug message, only with ``--verbose``."""
        if self._verbose:
            self._emit(f"[debug] {message}", "dim")

    def show_url(self, url: str) -> None:
        """Print a URL the user has to open by hand. Never suppressed."""
        print(url, file=sys.stderr, flush=True)

    def status(self, message: str):
        """Return a context manager showing a spinner while work runs.

        Falls back to a single info line when not attached to a TTY.
        """
        if self._quiet or self._no_color or not _is_tty():
            self.info(message)
            return _NullStatus()
        return self._stderr.status(message)

    def _emit(self, message: str, style: Optional[str]) -> None:
        if self._no_color:
            print(message, file=sys.stderr, flush=True)
        else:
            self._stderr.print(message, style=style, markup=False, highlight=False)


class _NullStatus:
    def __enter__(self) -> _NullStatus:
        return self

    def __exit__(self, *args: object) -> None:
        return None


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def _is_tty() -> bool:
    """Check if stdout is a TTY."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set (any value) or TERM=dumb."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


_log_handler: Optional[logging.Handler] = None


def configure_logging(verbose: bool = False) -> None:
    """Route the ``loopauth`` logger to the current stderr.

    WARNING and above by default, DEBUG with ``--verbose``. Calling again
    replaces the previously installed handler.
    """
    global _log_handler
    logger = logging.getLogger("loopauth")
    if _log_handler is not None:
        logger.removeHandler(_log_handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    _log_handler = handler


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager`."""
    global _output
    _output = output


def reset_output() -> None:
    """Drop the global :class:`OutputManager` (used between tests)."""
    global _output
    _output = None


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
