"""Config commands -- view and modify the user configuration.

Provides the ``loopauth config`` sub-command group. Values are stored in
the user config file (:func:`~loopauth.config.user_config_path`) and
validated against :class:`~loopauth.models.OAuthSettings` before saving.
"""

from __future__ import annotations

import typer

from loopauth.exceptions import ConfigError
from loopauth.output import error, get_output, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration.

    Prints the settings after applying the full precedence chain (user
    config, project config, environment variables).

    Example::

        loopauth config show
        loopauth --json config show
    """
    from loopauth.config import resolve_settings, user_config_path

    try:
        settings = resolve_settings()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"User config: {user_config_path()}")
    get_output().print_mapping(settings.model_dump(mode="json"), title="Settings")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name, e.g. 'client_id' or 'timeout'."),
    value: str = typer.Argument(help="Value to store."),
) -> None:
    """Store a value in the user configuration.

    The value is coerced by the settings model, so ``timeout 10`` stores a
    number. Use ``loopauth config unset`` to go back to the default.

    Example::

        loopauth config set client_id my-desktop-app
        loopauth config set max_retries 0
    """
    from loopauth.config import load_user_config, save_user_config
    from loopauth.models import OAuthSettings

    if key not in OAuthSettings.model_fields:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    try:
        values = load_user_config()
        values[key] = value
        settings = save_user_config(values)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f"Set {key} = {getattr(settings, key)}")


@config_app.command("unset")
def config_unset(
    key: str = typer.Argument(help="Setting name to remove from the user config."),
) -> None:
    """Remove a value from the user configuration so the default applies."""
    from loopauth.config import load_user_config, save_user_config

    try:
        values = load_user_config()
        if key not in values:
            info(f"{key} is not set in the user config.")
            return
        del values[key]
        save_user_config(values)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f"Removed {key}")


@config_app.command("path")
def config_path() -> None:
    """Print the path of the user config file."""
    from loopauth.config import user_config_path

    get_output().print_data(str(user_config_path()))
