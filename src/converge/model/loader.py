"""Load resource declarations from a structured YAML or JSON document."""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple
import yaml
from pydantic import ValidationError
from .models import ResourceAddress, ResourceDeclaration
from .references import parse_attribute
from ..utils.errors import DeclarationLoadError
from ..utils.logging import get_logger

logger = get_logger("model.loader")


def load_declarations(path: str) -> List[ResourceDeclaration]:
    """
    Load and validate a declaration document.

    Two layouts are accepted::

        resources:
          - kind: aws_vpc
            name: main
            attributes: {cidr_block: 10.0.0.0/16}
            depends_on: []

        resource:
          aws_vpc:
            main: {cidr_block: 10.0.0.0/16}

    In the map layout a `depends_on` key inside a resource body is treated as
    the explicit dependency list rather than an attribute.

    Args:
        path: Path to the YAML/JSON document

    Returns:
        Declarations in document order

    Raises:
        DeclarationLoadError: If the file cannot be read or is invalid
    """
    doc_path = Path(path)

    if not doc_path.exists():
        raise DeclarationLoadError(
            f"Declaration file not found: {path}. "
            "Please check the file path and ensure the file exists."
        )

    if not doc_path.is_file():
        raise DeclarationLoadError(f"Path is not a file: {path}")

    try:
        with open(doc_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DeclarationLoadError(f"Invalid YAML/JSON in declaration file: {e}")
    except OSError as e:
        raise DeclarationLoadError(
            f"Error reading declaration file: {e}. "
            "Please check file permissions and try again."
        )

    declarations = parse_declarations(data)
    logger.info(f"Loaded {len(declarations)} declarations from {path}")
    return declarations


def parse_declarations(data: Any) -> List[ResourceDeclaration]:
    """Build declarations from an already-parsed document."""
    if data is None:
        return []
    if not isinstance(data, dict):
        raise DeclarationLoadError("Declaration document must contain a mapping")

    if "resources" in data and "resource" in data:
        raise DeclarationLoadError("Use either 'resources' or 'resource', not both")

    if "resources" in data:
        entries = list(_list_entries(data["resources"]))
    elif "resource" in data:
        entries = list(_map_entries(data["resource"]))
    else:
        raise DeclarationLoadError("Declaration document must contain a 'resources' or 'resource' key")

    declarations: List[ResourceDeclaration] = []
    seen = set()
    for idx, (kind, name, attributes, depends_on) in enumerate(entries):
        declaration = _build_declaration(idx, kind, name, attributes, depends_on)
        if declaration.address in seen:
            raise DeclarationLoadError(f"Duplicate resource address: {declaration.address}")
        seen.add(declaration.address)
        declarations.append(declaration)

    return declarations


def _list_entries(resources: Any) -> Iterator[Tuple[Any, Any, Any, Any]]:
    if resources is None:
        return
    if not isinstance(resources, list):
        raise DeclarationLoadError("'resources' must be a list")
    for idx, entry in enumerate(resources):
        if not isinstance(entry, dict):
            raise DeclarationLoadError(f"Resource at index {idx} must be a mapping")
        unknown_keys = set(entry) - {"kind", "name", "attributes", "depends_on"}
        if unknown_keys:
            raise DeclarationLoadError(
                f"Resource at index {idx} has unknown keys: {', '.join(sorted(unknown_keys))}"
            )
        yield entry.get("kind"), entry.get("name"), entry.get("attributes") or {}, entry.get("depends_on") or []


def _map_entries(resources: Any) -> Iterator[Tuple[Any, Any, Any, Any]]:
    if resources is None:
        return
    if not isinstance(resources, dict):
        raise DeclarationLoadError("'resource' must be a mapping of kind -> name -> body")
    for kind, named in resources.items():
        if not isinstance(named, dict):
            raise DeclarationLoadError(f"'resource.{kind}' must be a mapping of name -> body")
        for name, body in named.items():
            if body is not None and not isinstance(body, dict):
                raise DeclarationLoadError(f"'resource.{kind}.{name}' must be a mapping")
            body = dict(body or {})
            depends_on = body.pop("depends_on", None) or []
            yield kind, name, body, depends_on


def _build_declaration(idx: int, kind: Any, name: Any, attributes: Any, depends_on: Any) -> ResourceDeclaration:
    if not isinstance(attributes, dict):
        raise DeclarationLoadError(f"Attributes of resource at index {idx} must be a mapping")
    if not isinstance(depends_on, list):
        raise DeclarationLoadError(f"depends_on of resource at index {idx} must be a list")

    label = f"{kind}.{name}"
    try:
        parsed: Dict[str, Any] = {
            str(key): parse_attribute(value) for key, value in attributes.items()
        }
        deps = [ResourceAddress.parse(str(dep)) for dep in depends_on]
        return ResourceDeclaration(kind=kind, name=name, attributes=parsed, depends_on=deps)
    except ValidationError as e:
        raise DeclarationLoadError(f"Invalid resource {label} at index {idx}: {e}")
    except ValueError as e:
        raise DeclarationLoadError(f"Invalid resource {label} at index {idx}: {e}")
