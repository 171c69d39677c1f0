"""Exclusive lock file serialising runs against one state directory."""

import getpass
import os
import socket
import time
import uuid
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from .models import LockInfo
from ..utils.errors import StateLockError
from ..utils.logging import get_logger

logger = get_logger("state.lock")

LOCK_FILENAME = "converge.lock"


def _who() -> str:
    try:
        user = getpass.getuser()
    except Exception:
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


def read_lock_info(path: Path) -> Optional[LockInfo]:
    """Return the current holder of the lock, or None if unlocked."""
    if not path.exists():
        return None
    try:
        return LockInfo.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning(f"Unreadable lock file {path}: {e}")
        return None


class StateLock:
    """Lock file created with O_EXCL; held for the duration of one run."""

    def __init__(self, path: Path, operation: str, timeout: float = 0.0, poll_interval: float = 0.5):
        self.path = Path(path)
        self.operation = operation
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.info: Optional[LockInfo] = None

    def acquire(self) -> LockInfo:
        """
        Take the lock, polling until `timeout` seconds have passed.

        Raises:
            StateLockError: If another run still holds the lock
        """
        info = LockInfo(id=uuid.uuid4().hex, operation=self.operation, who=_who(), pid=os.getpid())
        deadline = time.monotonic() + self.timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if time.monotonic() >= deadline:
                    holder = read_lock_info(self.path)
                    detail = (
                        f"held by {holder.who} (id {holder.id}, operation {holder.operation}, "
                        f"since {holder.created_at.isoformat()})"
                        if holder else "held by an unknown process"
                    )
                    raise StateLockError(f"State is locked: {detail}")
                time.sleep(self.poll_interval)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(info.model_dump_json(indent=2))
            break

        self.info = info
        logger.debug(f"Acquired state lock {info.id} for {self.operation}")
        return info

    def release(self) -> None:
        if self.info is None:
            return
        holder = read_lock_info(self.path)
        if holder is not None and holder.id != self.info.id:
            logger.warning(f"State lock was taken over by {holder.id}; leaving it in place")
        else:
            self.path.unlink(missing_ok=True)
            logger.debug(f"Released state lock {self.info.id}")
        self.info = None

    def __enter__(self) -> "StateLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def force_unlock(path: Path, lock_id: str) -> None:
    """
    Remove a lock left behind by a crashed run.

    Raises:
        StateLockError: If the lock is absent or held under a different id
    """
    holder = read_lock_info(Path(path))
    if holder is None:
        raise StateLockError(f"No lock found at {path}")
    if holder.id != lock_id:
        raise StateLockError(f"Lock id mismatch: lock is held as {holder.id}")
    Path(path).unlink()
    logger.info(f"Force-unlocked state lock {lock_id}")
