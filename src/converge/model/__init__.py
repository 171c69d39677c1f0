from .models import (
    AttributeValue,
    ComputedValue,
    DependencyEdge,
    LiteralValue,
    ReferenceValue,
    ResourceAddress,
    ResourceDeclaration,
)
from .loader import load_declarations, parse_declarations
from .references import UNKNOWN, evaluate, evaluate_attributes, parse_attribute, resolve_references

__all__ = [
    "AttributeValue",
    "ComputedValue",
    "DependencyEdge",
    "LiteralValue",
    "ReferenceValue",
    "ResourceAddress",
    "ResourceDeclaration",
    "load_declarations",
    "parse_declarations",
    "UNKNOWN",
    "evaluate",
    "evaluate_attributes",
    "parse_attribute",
    "resolve_references",
]
