from __future__ import annotations

import pytest

from specimen_import.db.store import MemoryStore, StaleRecordError
from specimen_import.models.domain import ParticipantGroup, Tube
from specimen_import.services.transaction import UnitOfWork, import_transaction


@pytest.fixture()
def seeded() -> MemoryStore:
    s = MemoryStore()
    s.seed(Tube(accession_id="T1", status="RETURNED"))
    return s


def test_identity_map_returns_same_object(seeded):
    uow = UnitOfWork(seeded)
    first = uow.get(Tube, "T1")
    assert uow.get(Tube, "T1") is first
    assert uow.find_by(Tube, "status", "RETURNED") is first
    assert seeded.lookup_count == 1


def test_preview_discards_changes(seeded):
    with import_transaction(seeded, commit=False) as uow:
        tube = uow.get(Tube, "T1")
        tube.status = "ACCEPTED"
        uow.mark_dirty(tube)
        uow.add(Tube(accession_id="T2"))
        assert len(uow.pending) == 2
    assert seeded.get(Tube, "T1").status == "RETURNED"
    assert seeded.get(Tube, "T2") is None


def test_commit_flushes_changes_and_bumps_versions(seeded):
    with import_transaction(seeded, commit=True) as uow:
        tube = uow.get(Tube, "T1")
        tube.status = "ACCEPTED"
        uow.mark_dirty(tube)
        uow.add(Tube(accession_id="T2"))
    stored = seeded.get(Tube, "T1")
    assert stored.status == "ACCEPTED"
    assert stored.version == 2
    assert seeded.get(Tube, "T2").version == 1


def test_exception_discards_and_propagates(seeded):
    with pytest.raises(RuntimeError, match="boom"):
        with import_transaction(seeded, commit=True) as uow:
            tube = uow.get(Tube, "T1")
            tube.status = "ACCEPTED"
            uow.mark_dirty(tube)
            raise RuntimeError("boom")
    assert seeded.get(Tube, "T1").status == "RETURNED"


def test_stale_record_rolls_back_whole_commit(seeded):
    uow = UnitOfWork(seeded)
    tube = uow.get(Tube, "T1")
    tube.status = "ACCEPTED"
    uow.mark_dirty(tube)
    uow.add(Tube(accession_id="T2"))
    # 別の取り込みが先にコミットした状態
    seeded.seed(Tube(accession_id="T1", status="REJECTED", version=5))
    with pytest.raises(StaleRecordError):
        uow.flush()
    assert seeded.get(Tube, "T1").status == "REJECTED"
    assert seeded.get(Tube, "T2") is None
    seeded.begin()  # transaction was rolled back, a new one can start
    seeded.rollback()


def test_add_rejects_second_object_for_same_key(seeded):
    uow = UnitOfWork(seeded)
    uow.get(Tube, "T1")
    with pytest.raises(ValueError):
        uow.add(Tube(accession_id="T1"))


def test_mark_dirty_requires_tracked_record(seeded):
    uow = UnitOfWork(seeded)
    with pytest.raises(ValueError):
        uow.mark_dirty(Tube(accession_id="T1"))


def test_closed_unit_of_work_refuses_access(seeded):
    uow = UnitOfWork(seeded)
    assert uow.discard() == 0
    with pytest.raises(RuntimeError):
        uow.get(Tube, "T1")


def test_all_merges_stored_and_new_records():
    store = MemoryStore()
    store.seed(ParticipantGroup(external_id="G1", accession_id="GRP-AAAAAA", title="One"))
    uow = UnitOfWork(store)
    existing = uow.get(ParticipantGroup, "G1")
    new = uow.add(ParticipantGroup(external_id="G2", accession_id="GRP-BBBBBB", title="Two"))
    groups = uow.all(ParticipantGroup)
    assert groups[0] is existing
    assert groups[1] is new
    assert len(groups) == 2
