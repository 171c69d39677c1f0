"""State store: durable record of last-applied resource state."""

import hashlib
import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional
from pydantic import ValidationError
from .lock import LOCK_FILENAME, StateLock
from .models import ResourceState
from ..model.models import ResourceAddress
from ..utils.errors import StateLockError, StateStoreError
from ..utils.logging import get_logger

logger = get_logger("state.store")


class StateStore(ABC):
    """
    Base state store.

    Lifecycle: `open()` takes the run lock and loads records, `close()`
    releases the lock. Reads and writes are only valid while open. The
    executor is the only writer during a run; each `put`/`delete` commits a
    single record and bumps the serial.
    """

    def __init__(self, lock_timeout: float = 0.0):
        self.lock_timeout = lock_timeout
        self._mutex = threading.RLock()
        self._records: Dict[ResourceAddress, ResourceState] = {}
        self._serial = 0
        self._lineage = ""
        self._is_open = False
        self._locked = False

    @contextmanager
    def session(self, operation: str = "apply", lock: bool = True) -> Iterator["StateStore"]:
        """Open the store for the duration of a `with` block."""
        self.open(operation, lock=lock)
        try:
            yield self
        finally:
            self.close()

    def open(self, operation: str = "apply", lock: bool = True) -> None:
        if self._is_open:
            raise StateStoreError("State store is already open")
        if lock:
            self._acquire_lock(operation)
        try:
            self._load()
        except Exception:
            if lock:
                self._release_lock()
            raise
        self._locked = lock
        self._is_open = True
        logger.debug(f"Opened state store for {operation} ({len(self._records)} records, serial {self._serial})")

    def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        if self._locked:
            self._release_lock()

    def _require_open(self) -> None:
        if not self._is_open:
            raise StateStoreError("State store is not open")

    def get(self, address: ResourceAddress) -> Optional[ResourceState]:
        """Return the record for an address, or None if absent."""
        self._require_open()
        with self._mutex:
            record = self._records.get(address)
            return record.model_copy(deep=True) if record else None

    def put(self, state: ResourceState) -> None:
        """Commit one record."""
        self._require_open()
        with self._mutex:
            record = state.model_copy(deep=True)
            self._write_record(record)
            self._records[record.address] = record
            self._advance_serial()
        logger.debug(f"Committed state for {state.address} (serial {self._serial})")

    def delete(self, address: ResourceAddress) -> None:
        """Remove the record for an address; a missing record is not an error."""
        self._require_open()
        with self._mutex:
            if address not in self._records:
                return
            self._remove_record(address)
            del self._records[address]
            self._advance_serial()
        logger.debug(f"Removed state for {address} (serial {self._serial})")

    def _advance_serial(self) -> None:
        """Bump the serial once a record change is durable; a failed meta write leaves the change in place."""
        self._serial += 1
        try:
            self._write_meta()
        except StateStoreError as e:
            logger.warning(f"State serial {self._serial} could not be written: {e}")

    def snapshot(self) -> Dict[ResourceAddress, ResourceState]:
        """Copy of every record, keyed by address."""
        self._require_open()
        with self._mutex:
            return {address: record.model_copy(deep=True) for address, record in self._records.items()}

    @property
    def serial(self) -> int:
        return self._serial

    @property
    def lineage(self) -> str:
        return self._lineage

    def digest(self) -> str:
        """sha256 over all records; changes whenever any record changes."""
        self._require_open()
        with self._mutex:
            payload = [
                self._records[address].model_dump(mode="json")
                for address in sorted(self._records, key=str)
            ]
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def __enter__(self) -> "StateStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def _load(self) -> None:
        """Populate `_records`, `_serial` and `_lineage`."""

    @abstractmethod
    def _write_record(self, state: ResourceState) -> None:
        pass

    @abstractmethod
    def _remove_record(self, address: ResourceAddress) -> None:
        pass

    @abstractmethod
    def _write_meta(self) -> None:
        pass

    @abstractmethod
    def _acquire_lock(self, operation: str) -> None:
        pass

    @abstractmethod
    def _release_lock(self) -> None:
        pass


class MemoryStateStore(StateStore):
    """In-process store; contents survive close/open of the same instance."""

    def __init__(self, lock_timeout: float = 0.0):
        super().__init__(lock_timeout)
        self._run_lock = threading.Lock()
        self._lineage = uuid.uuid4().hex

    def _load(self) -> None:
        pass

    def _write_record(self, state: ResourceState) -> None:
        pass

    def _remove_record(self, address: ResourceAddress) -> None:
        pass

    def _write_meta(self) -> None:
        pass

    def _acquire_lock(self, operation: str) -> None:
        if self.lock_timeout > 0:
            acquired = self._run_lock.acquire(timeout=self.lock_timeout)
        else:
            acquired = self._run_lock.acquire(blocking=False)
        if not acquired:
            raise StateLockError(f"State is locked by another run (requested for {operation})")

    def _release_lock(self) -> None:
        self._run_lock.release()


class FileStateStore(StateStore):
    """
    Directory-backed store.

    Layout::

        <directory>/meta.json              serial and lineage
        <directory>/resources/<addr>.json  one document per address
        <directory>/converge.lock          present while a run holds the lock

    Every document is written to a temporary file and moved into place with
    `os.replace`, so a crash mid-write leaves the previous version intact and
    never touches other records.
    """

    def __init__(self, directory: Path, lock_timeout: float = 0.0):
        super().__init__(lock_timeout)
        self.directory = Path(directory)
        self.resources_dir = self.directory / "resources"
        self.meta_path = self.directory / "meta.json"
        self.lock_path = self.directory / LOCK_FILENAME
        self._lock: Optional[StateLock] = None

    def _record_path(self, address: ResourceAddress) -> Path:
        return self.resources_dir / f"{address}.json"

    def _load(self) -> None:
        self._records = {}
        self._serial = 0
        self._lineage = uuid.uuid4().hex

        if self.meta_path.exists():
            try:
                meta = json.loads(self.meta_path.read_text(encoding="utf-8"))
                self._serial = int(meta.get("serial", 0))
                self._lineage = str(meta.get("lineage") or self._lineage)
            except (OSError, ValueError) as e:
                raise StateStoreError(f"Corrupt state metadata {self.meta_path}: {e}")

        if not self.resources_dir.exists():
            return

        for path in sorted(self.resources_dir.glob("*.json")):
            try:
                record = ResourceState.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                raise StateStoreError(f"Corrupt state record {path}: {e}")
            self._records[record.address] = record

        logger.info(f"Loaded {len(self._records)} state records from {self.directory}")

    def _atomic_write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp.{uuid.uuid4().hex[:8]}")
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StateStoreError(f"Failed to write {path}: {e}")

    def _write_record(self, state: ResourceState) -> None:
        self._atomic_write(self._record_path(state.address), state.model_dump_json(indent=2))

    def _remove_record(self, address: ResourceAddress) -> None:
        try:
            self._record_path(address).unlink(missing_ok=True)
        except OSError as e:
            raise StateStoreError(f"Failed to remove state for {address}: {e}")

    def _write_meta(self) -> None:
        meta = {"serial": self._serial, "lineage": self._lineage}
        self._atomic_write(self.meta_path, json.dumps(meta, indent=2) + "\n")

    def _acquire_lock(self, operation: str) -> None:
        self._lock = StateLock(self.lock_path, operation, timeout=self.lock_timeout)
        self._lock.acquire()

    def _release_lock(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None
