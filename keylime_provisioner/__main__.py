# Entry point for the keylime agent installer (Typer)

"""
CLI for installing the keylime agent as a systemd service.

Run without a subcommand to install.
"""
from pathlib import Path
from typing import Optional

import typer

from keylime_provisioner.config import Config, ConfigError
from keylime_provisioner.errors import BinaryNotFoundError, ProvisionError
from keylime_provisioner.logging import get_logger, setup_logging
from keylime_provisioner.provisioner import Provisioner, resolve_install_dir
from keylime_provisioner.systemd_manager import SystemdManager

logger = get_logger("KeylimeInstaller")

app = typer.Typer(add_completion=False)


def _load_config(config_path):
    try:
        config = Config(str(config_path) if config_path else None)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)
    setup_logging(config)
    return config


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Installer configuration file (YAML)."
    ),
):
    """
    Install and enable the keylime agent service.
    """
    ctx.obj = {"config_path": config}
    if ctx.invoked_subcommand is None:
        install(ctx)


@app.command()
def install(ctx: typer.Context):
    """Install unit files, the keylime user and directories, then enable the units."""
    config = _load_config(ctx.obj["config_path"])
    provisioner = Provisioner(config)
    try:
        provisioner.install()
    except (ProvisionError, OSError) as e:
        logger.debug("Install aborted", exc_info=True)
        # Underlying error text only; pre-flight failures carry their own message
        typer.echo(str(e), err=True)
        raise typer.Exit(1)


@app.command()
def render(
    ctx: typer.Context,
    install_dir: Optional[str] = typer.Option(
        None, "--install-dir", help="Directory holding keylime_agent."
    ),
):
    """Print the rendered agent unit without installing anything."""
    config = _load_config(ctx.obj["config_path"])
    agent = config.section("agent")
    units = config.section("systemd")
    if install_dir is None:
        try:
            install_dir = resolve_install_dir(agent["binary"])
        except BinaryNotFoundError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1)

    systemd = SystemdManager(units["unit_dir"], units.get("template_dir"))
    try:
        content = systemd.render_unit(
            units["agent_unit"], install_dir, units["placeholder"]
        )
    except OSError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    typer.echo(content, nl=False)


@app.command()
def status(ctx: typer.Context):
    """Show which parts of the installation are in place."""
    config = _load_config(ctx.obj["config_path"])
    checks = Provisioner(config).status()
    for name, ok in checks.items():
        mark = typer.style("ok", fg="green") if ok else typer.style("missing", fg="red")
        typer.echo(f"{name:<40} {mark}")
    if not all(checks.values()):
        raise typer.Exit(1)


def main():
    """
    Entry point for the keylime-agent-install console script.
    """
    app()


if __name__ == "__main__":
    main()
