"""State commands - inspect and repair recorded resource state."""

import sys
import click
from ...model.models import ResourceAddress
from ...presentation.formatter import format_state_list, format_state_record
from ...state.lock import LOCK_FILENAME, force_unlock, read_lock_info
from ...state.models import ResourceStatus
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import build_engine, format_error

logger = get_logger("cli.state")

config_option = click.option('--config', 'config_path', type=click.Path(), help='Explicit config file')
state_dir_option = click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')


def _parse_address(address: str) -> ResourceAddress:
    try:
        return ResourceAddress.parse(address)
    except ValueError as e:
        raise ConvergeError(str(e))


@click.group()
def state():
    """Inspect and repair recorded state."""
    pass


@state.command(name="list")
@config_option
@state_dir_option
def list_(config_path, state_dir):
    """List every recorded address."""
    try:
        engine = build_engine(config_path, state_dir=state_dir)
        with engine.store.session("state-list", lock=False):
            records = engine.store.snapshot()
        if not records:
            click.echo("State is empty.")
            return
        click.echo(format_state_list(records))
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command()
@click.argument('address')
@config_option
@state_dir_option
def show(address, config_path, state_dir):
    """Show the full record for ADDRESS (kind.name)."""
    try:
        target = _parse_address(address)
        engine = build_engine(config_path, state_dir=state_dir)
        with engine.store.session("state-show", lock=False):
            record = engine.store.get(target)
        if record is None:
            click.echo(format_error(f"No state recorded for {address}"), err=True)
            sys.exit(1)
        click.echo(format_state_record(record))
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command()
@click.argument('address')
@config_option
@state_dir_option
def rm(address, config_path, state_dir):
    """
    Forget ADDRESS without destroying the real object.

    The object keeps existing; converge simply stops managing it.
    """
    try:
        target = _parse_address(address)
        engine = build_engine(config_path, state_dir=state_dir)
        with engine.store.session("state-rm"):
            if engine.store.get(target) is None:
                click.echo(format_error(f"No state recorded for {address}"), err=True)
                sys.exit(1)
            engine.store.delete(target)
        click.echo(f"Removed {address} from state.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


def _set_status(address: str, status: ResourceStatus, config_path, state_dir) -> None:
    target = _parse_address(address)
    engine = build_engine(config_path, state_dir=state_dir)
    with engine.store.session(f"state-{status.value}"):
        record = engine.store.get(target)
        if record is None:
            raise ConvergeError(f"No state recorded for {address}")
        if record.status == ResourceStatus.ABSENT:
            raise ConvergeError(f"{address} is recorded as absent; the next apply will create it")
        engine.store.put(record.model_copy(update={"status": status}))


@state.command()
@click.argument('address')
@config_option
@state_dir_option
def taint(address, config_path, state_dir):
    """Mark ADDRESS so the next apply replaces it."""
    try:
        _set_status(address, ResourceStatus.TAINTED, config_path, state_dir)
        click.echo(f"{address} marked as tainted; it will be replaced on the next apply.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command()
@click.argument('address')
@config_option
@state_dir_option
def untaint(address, config_path, state_dir):
    """Clear the tainted mark on ADDRESS."""
    try:
        _set_status(address, ResourceStatus.PRESENT, config_path, state_dir)
        click.echo(f"{address} is no longer tainted.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command()
@click.argument('lock_id', required=False)
@config_option
@state_dir_option
def unlock(lock_id, config_path, state_dir):
    """
    Remove a lock left behind by a crashed run.

    Without LOCK_ID, show who holds the lock.
    """
    try:
        engine = build_engine(config_path, state_dir=state_dir)
        lock_path = engine.settings.state_dir / LOCK_FILENAME
        if lock_id is None:
            holder = read_lock_info(lock_path)
            if holder is None:
                click.echo("State is not locked.")
                return
            click.echo(f"Locked by {holder.who} (pid {holder.pid}) for {holder.operation} since {holder.created_at.isoformat()}")
            click.echo(f"Lock id: {holder.id}")
            return
        force_unlock(lock_path, lock_id)
        click.echo(f"Lock {lock_id} removed.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
