from __future__ import annotations

import pytest

from specimen_import.db.store import MemoryStore, StaleRecordError, StoreError
from specimen_import.models.domain import Specimen, Tube


def test_seed_and_get_hand_out_copies():
    store = MemoryStore()
    tube = Tube(accession_id="T1")
    store.seed(tube)
    tube.status = "ACCEPTED"  # 呼び出し側の変更はストアに影響しない
    fetched = store.get(Tube, "T1")
    assert fetched.status == "CREATED"
    assert fetched.version == 1
    fetched.status = "REJECTED"
    assert store.get(Tube, "T1").status == "CREATED"
    assert store.lookup_count == 2


def test_kinds_are_separate():
    store = MemoryStore()
    store.seed(Tube(accession_id="X1"))
    assert store.get(Specimen, "X1") is None
    assert len(store) == 1


def test_find_by_and_all():
    store = MemoryStore()
    store.seed(
        Tube(accession_id="T2", specimen_accession_id="S2"),
        Tube(accession_id="T1", specimen_accession_id="S1"),
    )
    assert store.find_by(Tube, "specimen_accession_id", "S2").accession_id == "T2"
    assert store.find_by(Tube, "specimen_accession_id", "S9") is None
    assert [t.accession_id for t in store.all(Tube)] == ["T1", "T2"]


def test_save_requires_transaction():
    store = MemoryStore()
    with pytest.raises(StoreError):
        store.save([Tube(accession_id="T1")])
    with pytest.raises(StoreError):
        store.commit()


def test_begin_twice_is_an_error():
    store = MemoryStore()
    store.begin()
    with pytest.raises(StoreError):
        store.begin()


def test_commit_applies_pending_writes():
    store = MemoryStore()
    store.begin()
    store.save([Tube(accession_id="T1")])
    assert store.get(Tube, "T1") is None  # コミット前は見えない
    store.commit()
    assert store.get(Tube, "T1").version == 1


def test_rollback_drops_pending_writes():
    store = MemoryStore()
    store.begin()
    store.save([Tube(accession_id="T1")])
    store.rollback()
    assert store.get(Tube, "T1") is None


def test_new_record_conflicts_with_existing_key():
    store = MemoryStore()
    store.seed(Tube(accession_id="T1"))
    store.begin()
    with pytest.raises(StaleRecordError, match="already exists"):
        store.save([Tube(accession_id="T1")])


def test_stale_version_is_rejected():
    store = MemoryStore()
    store.seed(Tube(accession_id="T1", version=3))
    stale = Tube(accession_id="T1", status="ACCEPTED", version=2)
    store.begin()
    with pytest.raises(StaleRecordError) as excinfo:
        store.save([stale])
    assert excinfo.value.kind == "tube"
    assert excinfo.value.key == "T1"


def test_update_of_deleted_record_is_rejected():
    store = MemoryStore()
    store.begin()
    with pytest.raises(StaleRecordError, match="no longer exists"):
        store.save([Tube(accession_id="T1", version=1)])
