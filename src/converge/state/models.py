"""Pydantic models for persisted resource state."""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from ..model.models import ResourceAddress


class ResourceStatus(str, Enum):
    """Lifecycle status of a recorded resource."""
    PRESENT = "present"
    TAINTED = "tainted"
    ABSENT = "absent"


def compute_fingerprint(attributes: Dict[str, Any]) -> str:
    """Stable sha256 over the canonical JSON form of resolved attributes."""
    canonical = json.dumps(attributes, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResourceState(BaseModel):
    """Last-applied record for one address."""
    address: ResourceAddress
    provider_id: str = Field(..., description="Identifier assigned by the resource provider")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Applied inputs, references resolved")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Attributes reported by the provider")
    status: ResourceStatus = Field(default=ResourceStatus.PRESENT)
    fingerprint: str = Field(..., description="Fingerprint of attributes")
    dependencies: List[ResourceAddress] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_apply(
        cls,
        address: ResourceAddress,
        provider_id: str,
        attributes: Dict[str, Any],
        outputs: Dict[str, Any],
        dependencies: Optional[List[ResourceAddress]] = None
    ) -> "ResourceState":
        """Build the record written after a confirmed create or update."""
        outputs = dict(outputs)
        outputs.setdefault("id", provider_id)
        return cls(
            address=address,
            provider_id=provider_id,
            attributes=dict(attributes),
            outputs=outputs,
            status=ResourceStatus.PRESENT,
            fingerprint=compute_fingerprint(attributes),
            dependencies=list(dependencies or []),
        )

    def values(self) -> Dict[str, Any]:
        """Attributes visible to references: inputs overlaid with provider outputs."""
        merged = dict(self.attributes)
        merged.update(self.outputs)
        return merged


class LockInfo(BaseModel):
    """Contents of the state lock file."""
    id: str
    operation: str
    who: str
    pid: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
