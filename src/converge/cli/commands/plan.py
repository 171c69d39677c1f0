"""Plan command - show what apply would change."""

import json
import sys
from pathlib import Path
import click
from ...presentation.formatter import format_plan
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import build_engine, format_error, load_declaration_file

logger = get_logger("cli.plan")


@click.command()
@click.argument('declarations', type=click.Path(exists=False))
@click.option('--out', '-o', type=click.Path(), help='Save the plan as JSON for a later `apply --plan`')
@click.option('--refresh/--no-refresh', default=None, help='Ask providers whether recorded objects still exist')
@click.option('--destroy', is_flag=True, help='Plan removal of everything in state')
@click.option('--json', 'as_json', is_flag=True, help='Output the plan as JSON instead of human-readable')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config file')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
def plan(declarations, out, refresh, destroy, as_json, config_path, state_dir):
    """
    Compute the changes needed to reconcile state with DECLARATIONS.

    The plan is read-only: no provider writes happen and state is unchanged.
    """
    try:
        try:
            decls = load_declaration_file(declarations)
        except FileNotFoundError as e:
            click.echo(format_error(str(e)), err=True)
            sys.exit(1)

        engine = build_engine(config_path, state_dir=state_dir)
        with engine.store.session("plan"):
            result = engine.plan(decls, destroy=destroy, refresh=refresh)

        if out:
            result.save(Path(out))
            click.echo(f"Plan saved to: {out}", err=True)

        if as_json:
            click.echo(json.dumps(result.model_dump(mode="json"), indent=2, sort_keys=True))
        else:
            click.echo(format_plan(result))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Plan failed: {e}"), err=True)
        sys.exit(1)
