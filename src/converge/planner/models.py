"""Plan types (steps, actions, metadata)."""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError
from ..model.models import ResourceAddress, ResourceDeclaration
from ..utils.errors import ConvergeError


class Action(str, Enum):
    """Change to make for one address."""
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


class AttributeChange(BaseModel):
    """Before/after value of one attribute."""
    before: Any = None
    after: Any = None


class PlanStep(BaseModel):
    """One address, its action and the diff that justified it."""
    address: ResourceAddress
    action: Action
    diff: Dict[str, AttributeChange] = Field(default_factory=dict)
    desired: Optional[Dict[str, Any]] = Field(None, description="Desired attributes; unknown values are placeholders")
    prior_fingerprint: Optional[str] = Field(None, description="Fingerprint of the recorded state, if any")
    declaration: Optional[ResourceDeclaration] = Field(None, description="Declaration re-evaluated at apply time")
    requires: List[ResourceAddress] = Field(default_factory=list, description="Steps that must commit first")
    deferred: bool = Field(False, description="Desired attributes depend on values known only after apply")
    reason: str = ""


class PlanMetadata(BaseModel):
    """State the plan was computed against."""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    destroy: bool = False
    refresh: bool = False
    state_serial: int = 0
    state_lineage: str = ""
    state_digest: str = ""
    engine_version: str = ""


class Plan(BaseModel):
    """Ordered change list; the order is a valid serial execution order."""
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)
    steps: List[PlanStep] = Field(default_factory=list)

    @property
    def changes(self) -> List[PlanStep]:
        """Steps that change something."""
        return [step for step in self.steps if step.action != Action.NOOP]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def step_for(self, address: ResourceAddress) -> Optional[PlanStep]:
        for step in self.steps:
            if step.address == address:
                return step
        return None

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in Action}
        for step in self.steps:
            counts[step.action.value] += 1
        return counts

    def save(self, path: Path) -> None:
        """Write the plan as JSON for review before apply."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "Plan":
        path = Path(path)
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConvergeError(f"Cannot read plan file {path}: {e}")
        except ValidationError as e:
            raise ConvergeError(f"Invalid plan file {path}: {e}")
