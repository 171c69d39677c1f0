"""Graph command - show the dependency order of a declaration file."""

import sys
import click
from ...graph.dependency_graph import DependencyGraph
from ...model.references import resolve_references
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import format_error, load_declaration_file

logger = get_logger("cli.graph")


@click.command()
@click.argument('declarations', type=click.Path(exists=False))
def graph(declarations):
    """
    Print DECLARATIONS in topological order with their dependencies.

    Fails with a non-zero exit code if references are unknown or form a cycle.
    """
    try:
        try:
            decls = load_declaration_file(declarations)
        except FileNotFoundError as e:
            click.echo(format_error(str(e)), err=True)
            sys.exit(1)

        dep_graph = DependencyGraph()
        dep_graph.build_from_declarations(decls, resolve_references(decls))

        for index, address in enumerate(dep_graph.topological_order(), start=1):
            dependencies = dep_graph.dependencies_of(address)
            line = f"{index:3d}. {address}"
            if dependencies:
                line += f"  <- {', '.join(str(d) for d in dependencies)}"
            click.echo(line)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
