"""orbstack-provider command-line interface.

Drives a single OrbStack machine for the current project directory:

    orbstack-provider up          Create or start the machine
    orbstack-provider halt        Stop the machine
    orbstack-provider reload      Stop and start the machine
    orbstack-provider destroy     Delete the machine
    orbstack-provider status      Show machine state
    orbstack-provider ssh-config  Print an OpenSSH config block
    orbstack-provider init        Write a starter orbstack.toml
"""

import logging
import sys
from pathlib import Path

import click

from orbstack_provider import __version__
from orbstack_provider.actions import ActionContext, run_action
from orbstack_provider.config import DEFAULT_DISTRO, ConfigManager, ProviderConfig
from orbstack_provider.errors import OrbStackError
from orbstack_provider.provider import Machine, Provider
from orbstack_provider.ui import ConsoleMessageSink

logger = logging.getLogger(__name__)

DEFAULT_DATA_ROOT = Path(".orbstack") / "machines"


def _build_provider(ctx: click.Context) -> Provider:
    """Load configuration and build the Provider for this invocation."""
    opts = ctx.obj
    config = ConfigManager.load_config(opts["config"])
    name = opts["name"]
    data_dir = Path(opts["data_dir"]) if opts["data_dir"] else Path.cwd() / DEFAULT_DATA_ROOT / name

    machine = Machine(name=name, config=config, data_dir=data_dir)
    return Provider(machine, ConsoleMessageSink(machine_name=name))


def _run(ctx: click.Context, action: str) -> Provider:
    """Run a registered action, turning provider errors into exit code 1."""
    try:
        provider = _build_provider(ctx)
        run_action(action, ActionContext(provider=provider))
        return provider
    except OrbStackError as e:
        logger.debug(f"Action '{action}' failed ({e.kind.value})", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--data-dir", help="Directory for machine state files", type=click.Path())
@click.option("--name", default="default", show_default=True, help="Logical machine name")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed execution information")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context, config: str | None, data_dir: str | None, name: str, verbose: bool
) -> None:
    """orbstack-provider - OrbStack machine lifecycle management.

    \b
    Examples:
        orbstack-provider init --distro ubuntu --version noble
        orbstack-provider up
        orbstack-provider ssh-config >> ~/.ssh/config
        orbstack-provider destroy
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(message)s")
    ctx.obj = {"config": config, "data_dir": data_dir, "name": name}


@main.command()
@click.pass_context
def up(ctx: click.Context) -> None:
    """Create the machine, or start it if it is stopped."""
    _run(ctx, "up")


@main.command()
@click.pass_context
def halt(ctx: click.Context) -> None:
    """Stop the machine."""
    _run(ctx, "halt")


@main.command()
@click.pass_context
def reload(ctx: click.Context) -> None:
    """Stop the machine, then start it again."""
    _run(ctx, "reload")


@main.command()
@click.option("--force", "-f", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def destroy(ctx: click.Context, force: bool) -> None:
    """Delete the machine and its local state."""
    if not force:
        click.confirm("Are you sure you want to destroy the machine?", abort=True)
    _run(ctx, "destroy")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the machine state."""
    try:
        provider = _build_provider(ctx)
    except OrbStackError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    state = provider.state()
    click.echo(f"{provider.machine.name}  {state.short_description} ({provider})")
    click.echo("")
    click.echo(state.long_description)


@main.command("ssh-config")
@click.option("--host", "host_alias", help="Host alias (default: machine name)")
@click.pass_context
def ssh_config(ctx: click.Context, host_alias: str | None) -> None:
    """Print an OpenSSH configuration block for the machine."""
    provider = _run(ctx, "ssh_run")

    try:
        info = provider.ssh_info()
    except OrbStackError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if info is None:
        click.echo("Error: SSH info is not available. Is the machine running?", err=True)
        sys.exit(1)

    click.echo(info.to_ssh_config(host_alias or provider.machine.name))


@main.command()
@click.option("--distro", default=DEFAULT_DISTRO, show_default=True, help="Distribution")
@click.option("--version", "distro_version", help="Distribution version, e.g. noble")
@click.option("--machine-name", help="Logical machine name used in the generated name")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init(
    ctx: click.Context,
    distro: str,
    distro_version: str | None,
    machine_name: str | None,
    force: bool,
) -> None:
    """Write a starter orbstack.toml in the current directory."""
    path = Path(ctx.obj["config"]) if ctx.obj["config"] else Path.cwd() / ConfigManager.DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        click.echo(f"Error: {path} already exists. Use --force to overwrite.", err=True)
        sys.exit(1)

    config = ProviderConfig(distro=distro, version=distro_version, machine_name=machine_name).finalize()
    errors = config.validate()
    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    try:
        ConfigManager.save_config(config, path)
    except OrbStackError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Wrote {path}")


if __name__ == "__main__":
    main()
