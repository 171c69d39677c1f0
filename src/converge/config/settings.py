"""Engine settings model."""

from pathlib import Path
from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Tunables for planning and applying."""
    state_dir: Path = Field(default=Path(".converge/state"), description="Directory of the file state store")
    parallelism: int = Field(default=10, ge=1, description="Maximum concurrent provider operations")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per provider call on transient errors")
    backoff_initial: float = Field(default=1.0, ge=0, description="First retry delay in seconds")
    backoff_max: float = Field(default=30.0, ge=0, description="Upper bound for retry delay in seconds")
    lock_timeout: float = Field(default=0.0, ge=0, description="Seconds to wait for the state lock")
    refresh: bool = Field(default=False, description="Check recorded objects still exist before planning")

    class Config:
        """Pydantic config."""
        extra = "forbid"
