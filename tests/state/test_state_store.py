"""Tests for state stores and the run lock."""

import json
import pytest
from converge.model.models import ResourceAddress
from converge.state.lock import LOCK_FILENAME, StateLock, force_unlock, read_lock_info
from converge.state.models import ResourceState, ResourceStatus, compute_fingerprint
from converge.state.store import FileStateStore, MemoryStateStore
from converge.utils.errors import StateLockError, StateStoreError

VPC = ResourceAddress(kind="aws_vpc", name="main")
SUBNET = ResourceAddress(kind="aws_subnet", name="a")


def _record(address, provider_id="id-1", **attributes):
    attributes = attributes or {"cidr_block": "10.0.0.0/16"}
    return ResourceState.from_apply(address, provider_id, attributes, {"arn": f"arn:{provider_id}"})


class TestResourceState:
    """Test state record helpers."""

    def test_from_apply_sets_fingerprint_and_id(self):
        record = _record(VPC)
        assert record.fingerprint == compute_fingerprint({"cidr_block": "10.0.0.0/16"})
        assert record.outputs["id"] == "id-1"
        assert record.status == ResourceStatus.PRESENT

    def test_fingerprint_ignores_key_order(self):
        assert compute_fingerprint({"a": 1, "b": [1, 2]}) == compute_fingerprint({"b": [1, 2], "a": 1})

    def test_values_overlay_outputs(self):
        values = _record(VPC).values()
        assert values["cidr_block"] == "10.0.0.0/16"
        assert values["arn"] == "arn:id-1"


class TestFileStateStore:
    """Test the directory-backed store."""

    def test_round_trip(self, tmp_path):
        """A record written in one session is read back identically in the next."""
        original = _record(VPC, tags={"env": "prod"}, ports=[80, 443])
        store = FileStateStore(tmp_path)
        with store.session():
            store.put(original)

        reopened = FileStateStore(tmp_path)
        with reopened.session():
            loaded = reopened.get(VPC)
            assert reopened.serial == 1
        assert loaded == original

    def test_one_document_per_address(self, tmp_path):
        store = FileStateStore(tmp_path)
        with store.session():
            store.put(_record(VPC))
            store.put(_record(SUBNET, "id-2"))
            store.delete(VPC)
        files = sorted(p.name for p in (tmp_path / "resources").glob("*.json"))
        assert files == ["aws_subnet.a.json"]
        assert json.loads((tmp_path / "meta.json").read_text())["serial"] == 3

    def test_no_temporary_files_left(self, tmp_path):
        store = FileStateStore(tmp_path)
        with store.session():
            store.put(_record(VPC))
            store.put(_record(VPC, "id-9"))
        assert not [p for p in tmp_path.rglob("*.tmp.*")]

    def test_corrupt_record_is_reported(self, tmp_path):
        (tmp_path / "resources").mkdir(parents=True)
        (tmp_path / "resources" / "aws_vpc.main.json").write_text("{not json", encoding="utf-8")
        store = FileStateStore(tmp_path)
        with pytest.raises(StateStoreError, match="Corrupt state record"):
            store.open()
        assert not (tmp_path / LOCK_FILENAME).exists()

    def test_operations_require_open_store(self, tmp_path):
        with pytest.raises(StateStoreError, match="not open"):
            FileStateStore(tmp_path).get(VPC)

    def test_digest_changes_with_content(self, tmp_path):
        store = FileStateStore(tmp_path)
        with store.session():
            empty = store.digest()
            store.put(_record(VPC))
            assert store.digest() != empty

    def test_get_returns_copy(self, tmp_path):
        store = FileStateStore(tmp_path)
        with store.session():
            store.put(_record(VPC))
            store.get(VPC).attributes["cidr_block"] = "mutated"
            assert store.get(VPC).attributes["cidr_block"] == "10.0.0.0/16"


class TestLocking:
    """Concurrent runs against one store are serialised."""

    def test_second_session_is_rejected(self, tmp_path):
        first = FileStateStore(tmp_path)
        second = FileStateStore(tmp_path)
        with first.session("apply"):
            with pytest.raises(StateLockError, match="locked"):
                second.open("apply")
        with second.session("apply"):
            pass

    def test_unlocked_session_does_not_block(self, tmp_path):
        with FileStateStore(tmp_path).session("apply"):
            with FileStateStore(tmp_path).session("state-list", lock=False) as reader:
                assert reader.snapshot() == {}

    def test_force_unlock(self, tmp_path):
        lock_path = tmp_path / LOCK_FILENAME
        info = StateLock(lock_path, "apply").acquire()
        assert read_lock_info(lock_path).id == info.id

        with pytest.raises(StateLockError, match="mismatch"):
            force_unlock(lock_path, "wrong-id")
        force_unlock(lock_path, info.id)
        assert read_lock_info(lock_path) is None

    def test_force_unlock_without_lock(self, tmp_path):
        with pytest.raises(StateLockError, match="No lock"):
            force_unlock(tmp_path / LOCK_FILENAME, "anything")

    def test_memory_store_lock(self):
        store = MemoryStateStore()
        with store.session():
            store.put(_record(VPC))
            with pytest.raises(StateLockError):
                store._acquire_lock("apply")
        with store.session():
            assert store.get(VPC) is not None
