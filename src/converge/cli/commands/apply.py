"""Apply command - reconcile real resources with the declarations."""

import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator
import click
from ...planner.models import Plan
from ...presentation.formatter import format_apply_result, format_plan
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import build_engine, format_error, load_declaration_file, resolve_file_path

logger = get_logger("cli.apply")


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Turn the first Ctrl-C into a graceful cancellation.

    In-flight provider calls finish and are recorded; a second Ctrl-C
    interrupts immediately.
    """
    event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        if event.is_set():
            signal.signal(signal.SIGINT, previous)
            raise KeyboardInterrupt
        click.echo("\nInterrupt received; waiting for running operations to finish...", err=True)
        event.set()

    signal.signal(signal.SIGINT, handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)


def run_apply(engine, declarations, plan_file, destroy, auto_approve, refresh) -> int:
    """Plan (or load a saved plan), confirm, apply. Returns the exit code."""
    with engine.store.session("destroy" if destroy else "apply"):
        if plan_file:
            run_plan = Plan.load(resolve_file_path(plan_file))
            engine.check_plan(run_plan)
        else:
            run_plan = engine.plan(declarations, destroy=destroy, refresh=refresh)

        click.echo(format_plan(run_plan))
        if not run_plan.has_changes:
            return 0

        # A saved plan was already reviewed when it was written.
        if not auto_approve and not plan_file:
            prompt = "Destroy all recorded resources?" if destroy else "Apply these changes?"
            if not click.confirm(prompt, default=False):
                click.echo("Apply cancelled.", err=True)
                return 1

        with cancel_on_interrupt() as cancel_event:
            result = engine.apply(run_plan, cancel_event=cancel_event)

    click.echo("")
    click.echo(format_apply_result(result))
    return result.exit_code


@click.command()
@click.argument('declarations', required=False, type=click.Path(exists=False))
@click.option('--plan', 'plan_file', type=click.Path(), help='Apply a plan saved with `plan --out`')
@click.option('--auto-approve', is_flag=True, help='Skip the confirmation prompt')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
@click.option('--refresh/--no-refresh', default=None, help='Ask providers whether recorded objects still exist')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config file')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
def apply(declarations, plan_file, auto_approve, parallelism, refresh, config_path, state_dir):
    """
    Apply changes so real resources match DECLARATIONS.

    Exit codes: 0 on success, 1 if nothing could be applied, 2 if some
    changes were applied and others failed or were skipped.
    """
    if not declarations and not plan_file:
        click.echo(format_error("Provide a declaration file or --plan"), err=True)
        sys.exit(1)

    try:
        decls = []
        if not plan_file:
            try:
                decls = load_declaration_file(declarations)
            except FileNotFoundError as e:
                click.echo(format_error(str(e)), err=True)
                sys.exit(1)

        engine = build_engine(config_path, state_dir=state_dir, parallelism=parallelism)
        exit_code = run_apply(engine, decls, plan_file, False, auto_approve, refresh)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Apply failed: {e}"), err=True)
        sys.exit(1)

    sys.exit(exit_code)
