"""Pydantic models for declared resources and their attribute values."""

import re
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Union
from pydantic import BaseModel, Field

NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"
_NAME_RE = re.compile(NAME_PATTERN)

PathSegment = Union[int, str]


class ResourceAddress(BaseModel):
    """Unique identifier of a resource: (kind, logical name)."""
    kind: str = Field(..., pattern=NAME_PATTERN, description="Resource kind, e.g. aws_vpc")
    name: str = Field(..., pattern=NAME_PATTERN, description="Logical name within the kind")

    class Config:
        """Pydantic config."""
        frozen = True

    @classmethod
    def parse(cls, address: str) -> "ResourceAddress":
        """Parse a `kind.name` string."""
        parts = address.strip().split(".")
        if len(parts) != 2 or not all(_NAME_RE.match(p) for p in parts):
            raise ValueError(f"Invalid resource address: {address!r} (expected kind.name)")
        return cls(kind=parts[0], name=parts[1])

    def __str__(self) -> str:
        return f"{self.kind}.{self.name}"


class LiteralValue(BaseModel):
    """Attribute value without references."""
    type: Literal["literal"] = "literal"
    value: Any = None


class ReferenceValue(BaseModel):
    """Whole-value reference to another resource's attribute."""
    type: Literal["reference"] = "reference"
    address: ResourceAddress
    path: List[PathSegment] = Field(..., min_length=1, description="Attribute path below the resource")

    def render(self) -> str:
        """Render the reference in interpolation syntax (without the ${ })."""
        text = str(self.address)
        for segment in self.path:
            text += f"[{segment}]" if isinstance(segment, int) else f".{segment}"
        return text


class ComputedValue(BaseModel):
    """Structure or string embedding one or more references."""
    type: Literal["computed"] = "computed"
    expression: Any = Field(..., description="Raw value with ${...} interpolations")
    references: List[ReferenceValue] = Field(default_factory=list)


AttributeValue = Annotated[
    Union[LiteralValue, ReferenceValue, ComputedValue],
    Field(discriminator="type"),
]


class ResourceDeclaration(BaseModel):
    """Desired state of one resource, immutable after load."""
    kind: str = Field(..., pattern=NAME_PATTERN)
    name: str = Field(..., pattern=NAME_PATTERN)
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)
    depends_on: List[ResourceAddress] = Field(default_factory=list, description="Explicit dependencies")

    class Config:
        """Pydantic config."""
        frozen = True

    @property
    def address(self) -> ResourceAddress:
        return ResourceAddress(kind=self.kind, name=self.name)

    def references(self) -> List[ReferenceValue]:
        """All references embedded in this declaration's attributes."""
        refs: List[ReferenceValue] = []
        for value in self.attributes.values():
            if isinstance(value, ReferenceValue):
                refs.append(value)
            elif isinstance(value, ComputedValue):
                refs.extend(value.references)
        return refs

    def dependencies(self) -> List[ResourceAddress]:
        """Referenced and explicit dependencies, deduplicated, in order of appearance."""
        seen: List[ResourceAddress] = []
        for address in [ref.address for ref in self.references()] + list(self.depends_on):
            if address not in seen:
                seen.append(address)
        return seen


class DependencyEdge(NamedTuple):
    """Edge meaning `source` depends on `target`."""
    source: ResourceAddress
    target: ResourceAddress
