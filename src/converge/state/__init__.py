from .models import LockInfo, ResourceState, ResourceStatus, compute_fingerprint
from .lock import StateLock, force_unlock, read_lock_info
from .store import FileStateStore, MemoryStateStore, StateStore

__all__ = [
    "LockInfo",
    "ResourceState",
    "ResourceStatus",
    "compute_fingerprint",
    "StateLock",
    "force_unlock",
    "read_lock_info",
    "FileStateStore",
    "MemoryStateStore",
    "StateStore",
]
