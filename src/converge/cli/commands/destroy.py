"""Destroy command - remove every resource recorded in state."""

import sys
import click
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import build_engine, format_error, load_declaration_file
from .apply import run_apply

logger = get_logger("cli.destroy")


@click.command()
@click.argument('declarations', required=False, type=click.Path(exists=False))
@click.option('--auto-approve', is_flag=True, help='Skip the confirmation prompt')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config file')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
def destroy(declarations, auto_approve, parallelism, config_path, state_dir):
    """
    Destroy everything recorded in state, dependents first.

    DECLARATIONS is optional; when given it is validated before anything
    is destroyed.
    """
    try:
        decls = []
        if declarations:
            try:
                decls = load_declaration_file(declarations)
            except FileNotFoundError as e:
                click.echo(format_error(str(e)), err=True)
                sys.exit(1)

        engine = build_engine(config_path, state_dir=state_dir, parallelism=parallelism)
        exit_code = run_apply(engine, decls, None, True, auto_approve, False)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Destroy failed: {e}"), err=True)
        sys.exit(1)

    sys.exit(exit_code)
