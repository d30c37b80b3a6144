"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for loopauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.loopauth/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- a single :class:`~loopauth.models.OAuthSettings`
  JSON file. Managed via :func:`load_user_config` and
  :func:`save_user_config`.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, project-local config, and user config into the
  effective settings.
* **Credential resolution** -- :func:`resolve_credential` reads a secret
  (e.g. a refresh token) from an env var, a file, or an interactive prompt.

Tokens themselves are never written to disk by this module.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from loopauth.exceptions import ConfigError
from loopauth.models import OAuthSettings

_APP_NAME = "loopauth"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "loopauth.json"

ENV_OVERRIDES: dict[str, str] = {
    "LOOPAUTH_CLIENT_ID": "client_id",
    "LOOPAUTH_REDIRECT_PATH": "redirect_path",
    "LOOPAUTH_AUTHORIZE_URL": "authorize_url",
    "LOOPAUTH_TOKEN_URL": "token_url",
    "LOOPAUTH_SCOPE": "scope",
}
"""Environment variables and the settings field each one overrides."""


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/loopauth/`` (default ``~/.config/loopauth/``).
    On macOS/Windows: ``~/.loopauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/loopauth/`` (default ``~/.local/share/loopauth/``).
    On macOS/Windows: ``~/.loopauth/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def user_config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file lives next to *path* so that ``os.replace`` is an
    atomic rename. On any failure the temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Loading ---


def _read_json_object(path: Path, label: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def load_user_config() -> dict[str, Any]:
    """Load the raw user config values.

    Returns:
        The JSON object stored in the user config file, or an empty dict when
        the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON.
    """
    path = user_config_path()
    if not path.is_file():
        return {}
    return _read_json_object(path, "user config")


def save_user_config(values: dict[str, Any]) -> OAuthSettings:
    """Validate *values* and persist them atomically as the user config.

    Only the keys present in *values* are written, so defaults keep tracking
    the package rather than being frozen into the file.

    Returns:
        The settings the saved values produce.

    Raises:
        ConfigError: If the values fail validation.
    """
    settings = _validate(values, "user config")
    _atomic_write(user_config_path(), json.dumps(values, indent=2) + "\n")
    return settings


def load_project_config() -> dict[str, Any]:
    """Load ``./loopauth.json`` if present, else an empty dict."""
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return {}
    return _read_json_object(path, "project config")


def _validate(values: dict[str, Any], label: str) -> OAuthSettings:
    try:
        return OAuthSettings.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid {label}: {exc}") from exc


# --- Precedence resolution ---


def resolve_settings(cli_overrides: Optional[dict[str, Any]] = None) -> OAuthSettings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (*cli_overrides*, ``None`` values ignored)
        2. Environment variables (see :data:`ENV_OVERRIDES`)
        3. Project config (``./loopauth.json``)
        4. User config (``~/.config/loopauth/config.json``)
        5. Defaults

    Raises:
        ConfigError: If a layer is unreadable or the merged values are invalid.
    """
    merged: dict[str, Any] = {}
    merged.update(load_user_config())
    merged.update(load_project_config())
    for env_var, field in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            merged[field] = value
    for key, value in (cli_overrides or {}).items():
        if value is not None:
            merged[key] = value
    return _validate(merged, "configuration")


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts without echo (requires a TTY)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Refresh token: ")

    raise ConfigError(f"Unknown credential source format: {source}")
