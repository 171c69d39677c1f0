"""Result types for plan execution."""

from typing import Dict, List
from pydantic import BaseModel, Field


class ApplyResult(BaseModel):
    """Structured outcome of one apply run."""
    applied: Dict[str, str] = Field(default_factory=dict, description="Address -> action performed")
    unchanged: List[str] = Field(default_factory=list, description="Addresses with nothing to do")
    failed: Dict[str, str] = Field(default_factory=dict, description="Address -> error message")
    skipped: Dict[str, str] = Field(default_factory=dict, description="Address -> reason it was not attempted")
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Whether every step ran and succeeded."""
        return not self.failed and not self.skipped and not self.cancelled

    @property
    def partial(self) -> bool:
        """Some steps committed while others failed or were not reached."""
        return not self.success and bool(self.applied)

    @property
    def exit_code(self) -> int:
        """0 success, 1 nothing could be applied, 2 partial failure."""
        if self.success:
            return 0
        return 2 if self.partial else 1


class ResultCollector:
    """Aggregates step outcomes during execution."""

    def __init__(self) -> None:
        self._result = ApplyResult()

    def record_applied(self, address: str, action: str) -> None:
        self._result.applied[address] = action

    def record_unchanged(self, address: str) -> None:
        self._result.unchanged.append(address)

    def record_failure(self, address: str, message: str) -> None:
        self._result.failed[address] = message

    def record_skipped(self, address: str, reason: str) -> None:
        self._result.skipped.setdefault(address, reason)

    def mark_cancelled(self) -> None:
        self._result.cancelled = True

    def finalize(self, duration: float) -> ApplyResult:
        """Return the final result with duration set."""
        self._result.duration_seconds = duration
        return self._result
