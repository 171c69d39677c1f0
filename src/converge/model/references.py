"""Find ${kind.name.attr} references in attribute values and evaluate them."""

import json
import re
from typing import Any, Callable, Dict, List, Sequence, Set
from .models import (
    AttributeValue,
    ComputedValue,
    DependencyEdge,
    LiteralValue,
    PathSegment,
    ReferenceValue,
    ResourceAddress,
    ResourceDeclaration,
)
from ..utils.errors import UnknownReferenceError, UnresolvedReferenceError
from ..utils.logging import get_logger

logger = get_logger("model.references")

# Placeholder for values that only exist once a pending resource is applied.
UNKNOWN = "(known after apply)"

_NAME = r"[A-Za-z_][A-Za-z0-9_-]*"
REFERENCE_RE = re.compile(
    r"(?<!\$)\$\{\s*(" + _NAME + r")\.(" + _NAME + r")((?:\.[A-Za-z0-9_-]+|\[\d+\])+)\s*\}"
)
_OPEN_RE = re.compile(r"(?<!\$)\$\{")
_PATH_RE = re.compile(r"\.([A-Za-z0-9_-]+)|\[(\d+)\]")

Resolver = Callable[[ReferenceValue], Any]


def _parse_path(text: str) -> List[PathSegment]:
    path: List[PathSegment] = []
    for match in _PATH_RE.finditer(text):
        name, index = match.groups()
        if index is not None:
            path.append(int(index))
        elif name.isdigit():
            path.append(int(name))
        else:
            path.append(name)
    return path


def _reference_from_match(match: "re.Match[str]") -> ReferenceValue:
    kind, name, path = match.groups()
    return ReferenceValue(
        address=ResourceAddress(kind=kind, name=name),
        path=_parse_path(path),
    )


def _scan_string(text: str) -> List[ReferenceValue]:
    """Return references in a string, rejecting malformed ${...} expressions."""
    matches = list(REFERENCE_RE.finditer(text))
    if len(_OPEN_RE.findall(text)) != len(matches):
        raise ValueError(
            f"Invalid reference expression in {text!r}; expected ${{kind.name.attribute}}"
        )
    return [_reference_from_match(m) for m in matches]


def find_references(raw: Any) -> List[ReferenceValue]:
    """
    Scan a raw attribute value for embedded references.

    Strings are searched directly; lists and mapping values are searched
    recursively. Mapping keys are never treated as references.

    Args:
        raw: Attribute value as loaded from the declaration document

    Returns:
        References in the order they appear

    Raises:
        ValueError: If a ${...} expression is not a valid reference
    """
    if isinstance(raw, str):
        return _scan_string(raw)
    refs: List[ReferenceValue] = []
    if isinstance(raw, list):
        for item in raw:
            refs.extend(find_references(item))
    elif isinstance(raw, dict):
        for item in raw.values():
            refs.extend(find_references(item))
    return refs


def _unescape(raw: Any) -> Any:
    if isinstance(raw, str):
        return raw.replace("$${", "${")
    if isinstance(raw, list):
        return [_unescape(item) for item in raw]
    if isinstance(raw, dict):
        return {key: _unescape(item) for key, item in raw.items()}
    return raw


def parse_attribute(raw: Any) -> AttributeValue:
    """Classify a raw attribute value as literal, reference or computed."""
    refs = find_references(raw)
    if not refs:
        return LiteralValue(value=_unescape(raw))
    if isinstance(raw, str) and REFERENCE_RE.fullmatch(raw.strip()):
        return refs[0]
    return ComputedValue(expression=raw, references=refs)


def resolve_references(declarations: Sequence[ResourceDeclaration]) -> List[DependencyEdge]:
    """
    Derive dependency edges from references and explicit depends_on lists.

    Args:
        declarations: Full declaration set

    Returns:
        Deduplicated edges in declaration order

    Raises:
        UnknownReferenceError: If a reference names an undeclared address
    """
    known = {decl.address for decl in declarations}
    edges: List[DependencyEdge] = []
    seen: Set[DependencyEdge] = set()

    for decl in declarations:
        source = decl.address
        targets = []
        for ref in decl.references():
            if ref.address not in known:
                raise UnknownReferenceError(str(source), "${" + ref.render() + "}")
            targets.append(ref.address)
        for dep in decl.depends_on:
            if dep not in known:
                raise UnknownReferenceError(str(source), str(dep))
            targets.append(dep)

        for target in targets:
            edge = DependencyEdge(source, target)
            if edge not in seen:
                seen.add(edge)
                edges.append(edge)
                logger.debug(f"Reference edge: {source} -> {target}")

    logger.info(f"Resolved {len(edges)} dependency edges across {len(declarations)} declarations")
    return edges


def lookup_path(values: Dict[str, Any], ref: ReferenceValue) -> Any:
    """Walk a reference's attribute path through a resource's known values."""
    current: Any = values
    for segment in ref.path:
        if current == UNKNOWN:
            return UNKNOWN
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and isinstance(segment, int) and -len(current) <= segment < len(current):
            current = current[segment]
        else:
            raise UnresolvedReferenceError(
                "${" + ref.render() + "}",
                f"attribute {segment!r} not found on {ref.address}",
            )
    return current


def is_unknown(value: Any) -> bool:
    """True if the value, or anything nested in it, is not yet known."""
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, list):
        return any(is_unknown(item) for item in value)
    if isinstance(value, dict):
        return any(is_unknown(item) for item in value.values())
    return False


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _evaluate_expression(expression: Any, resolve: Resolver) -> Any:
    if isinstance(expression, str):
        whole = REFERENCE_RE.fullmatch(expression.strip())
        if whole:
            return resolve(_reference_from_match(whole))

        pending = False

        def substitute(match: "re.Match[str]") -> str:
            nonlocal pending
            value = resolve(_reference_from_match(match))
            if is_unknown(value):
                pending = True
                return ""
            return _to_text(value)

        text = REFERENCE_RE.sub(substitute, expression)
        return UNKNOWN if pending else _unescape(text)
    if isinstance(expression, list):
        return [_evaluate_expression(item, resolve) for item in expression]
    if isinstance(expression, dict):
        return {key: _evaluate_expression(item, resolve) for key, item in expression.items()}
    return expression


def evaluate(value: AttributeValue, resolve: Resolver) -> Any:
    """
    Evaluate an attribute value.

    Args:
        value: Attribute value from a declaration
        resolve: Callable returning the current value of a reference, or
            UNKNOWN when the source is still pending

    Returns:
        Literal value with every known reference substituted; values that
        depend on a pending reference are UNKNOWN
    """
    if isinstance(value, LiteralValue):
        return value.value
    if isinstance(value, ReferenceValue):
        return resolve(value)
    return _evaluate_expression(value.expression, resolve)


def evaluate_attributes(declaration: ResourceDeclaration, resolve: Resolver) -> Dict[str, Any]:
    """Evaluate every attribute of a declaration."""
    return {
        name: evaluate(value, resolve)
        for name, value in declaration.attributes.items()
    }
