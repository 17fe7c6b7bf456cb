"""Operation -> step registration table.

Each host operation runs a fixed, ordered list of steps against a Provider.
The table is static so the composition of every operation is visible in one
place:

    up       check environment, up
    halt     halt
    start    start, wait for SSH
    reload   reload, wait for SSH, provision
    destroy  destroy
    ssh_run  ensure SSH ready

Provisioning belongs to the host; it is a callable on the ActionContext and
the step is skipped when none is given.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from orbstack_provider.provider import Provider

logger = logging.getLogger(__name__)


@dataclass
class ActionContext:
    """Per-invocation inputs shared by all steps."""

    provider: Provider
    provisioner: Callable[[Provider], None] | None = None


Step = Callable[[ActionContext], None]


def check_environment(ctx: ActionContext) -> None:
    ctx.provider.cli.check_environment()


def up(ctx: ActionContext) -> None:
    ctx.provider.up()


def halt(ctx: ActionContext) -> None:
    ctx.provider.halt()


def start(ctx: ActionContext) -> None:
    ctx.provider.start()


def reload(ctx: ActionContext) -> None:
    ctx.provider.reload()


def wait_for_ssh(ctx: ActionContext) -> None:
    ctx.provider.wait_for_ssh()


def provision(ctx: ActionContext) -> None:
    if ctx.provisioner is None:
        logger.debug("No provisioner configured, skipping")
        return
    ctx.provider.ui.info("Running provisioner...")
    ctx.provisioner(ctx.provider)


def destroy(ctx: ActionContext) -> None:
    ctx.provider.destroy()


def ensure_ssh_ready(ctx: ActionContext) -> None:
    ctx.provider.ensure_ssh_ready()


ACTIONS: dict[str, tuple[Step, ...]] = {
    "up": (check_environment, up),
    "halt": (halt,),
    "start": (start, wait_for_ssh),
    "reload": (reload, wait_for_ssh, provision),
    "destroy": (destroy,),
    "ssh_run": (ensure_ssh_ready,),
}


def run_action(name: str, ctx: ActionContext) -> None:
    """Run every step registered for an operation, in order.

    A step that raises stops the sequence; later steps do not run.

    Raises:
        KeyError: If no operation is registered under name
    """
    try:
        steps = ACTIONS[name]
    except KeyError:
        raise KeyError(f"Unknown action '{name}'. Available: {', '.join(sorted(ACTIONS))}") from None

    logger.debug(f"Running action '{name}': {[step.__name__ for step in steps]}")
    for step in steps:
        step(ctx)


__all__ = ["ACTIONS", "ActionContext", "run_action"]
