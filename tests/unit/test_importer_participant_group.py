from __future__ import annotations

import random

import pytest

from specimen_import.db.store import MemoryStore
from specimen_import.importers import build_importer
from specimen_import.models.domain import ParticipantGroup
from specimen_import.services.accession import AccessionIdGenerator

"""Participant group roster: Sys ID in C, participant count in H, title in J."""


def roster_row(external_id, count, title) -> list:
    row = [None] * 10
    row[2], row[7], row[9] = external_id, count, title
    return row


HEADER = roster_row("Sys ID", "Participants", "Title")


@pytest.fixture()
def groups_store() -> MemoryStore:
    s = MemoryStore()
    s.seed(
        ParticipantGroup(external_id="G1", accession_id="GRP-AAAAA1", title="Old Title", participant_count=3),
        ParticipantGroup(external_id="G2", accession_id="GRP-AAAAA2", title="Dropped Group"),
        ParticipantGroup(external_id="G3", accession_id="GRP-AAAAA3", title="Inactive", is_active=False),
    )
    return s


def run(worksheet, store, *, commit=False, **kwargs):
    pipeline = build_importer("participant-groups", worksheet, store, filename="groups.xlsx", **kwargs)
    pipeline.process(commit=commit)
    return pipeline


def test_preview_classifies_created_updated_deactivated(worksheet_builder, groups_store):
    ws = worksheet_builder([HEADER, roster_row("G1", 10, "Group One"), roster_row("NEW", 4, "New Group")])
    pipeline = run(ws, groups_store)
    output = pipeline.output
    assert output.natural_keys("updated") == ["G1"]
    assert output.natural_keys("created") == ["NEW"]
    assert output.natural_keys("deactivated") == ["G2"]
    assert output["created"][0].accession_id == "(automatic)"
    assert not pipeline.has_errors()
    # プレビューは保存しない
    assert groups_store.get(ParticipantGroup, "G2").is_active
    assert groups_store.get(ParticipantGroup, "NEW") is None


def test_commit_persists_and_generates_accession(worksheet_builder, groups_store):
    ws = worksheet_builder([HEADER, roster_row("G1", 10, "Group One"), roster_row("NEW", 4, "New Group")])
    generator = AccessionIdGenerator(lambda candidate: False, rng=random.Random(7))
    run(ws, groups_store, commit=True, id_generator=generator)

    created = groups_store.get(ParticipantGroup, "NEW")
    assert created.accession_id.startswith("GRP-")
    assert len(created.accession_id) == len("GRP-") + 6
    assert created.participant_count == 4
    updated = groups_store.get(ParticipantGroup, "G1")
    assert (updated.title, updated.participant_count, updated.version) == ("Group One", 10, 2)
    assert not groups_store.get(ParticipantGroup, "G2").is_active


def test_blank_count_is_informational(worksheet_builder, groups_store):
    ws = worksheet_builder([HEADER, roster_row("G1", None, "Group One")])
    pipeline = run(ws, groups_store)
    assert pipeline.output["updated"][0].participant_count == 0
    assert not pipeline.has_errors()
    info = pipeline.get_non_errors()
    assert [(m.details, m.column_letter) for m in info] == [("Participant count is blank, using 0", "H")]


@pytest.mark.parametrize(
    "count,message",
    [
        (-1, "Participant count cannot be less than 0"),
        (2.5, "Participant count must be a whole number"),
        ("many", "Participant count must be a whole number"),
    ],
)
def test_bad_counts(worksheet_builder, groups_store, count, message):
    pipeline = run(worksheet_builder([HEADER, roster_row("G1", count, "Group One")]), groups_store)
    assert [m.details for m in pipeline.get_errors()] == [message]


def test_title_must_be_scanner_safe(worksheet_builder, groups_store):
    pipeline = run(worksheet_builder([HEADER, roster_row("G1", 1, "Group #1")]), groups_store)
    errors = pipeline.get_errors()
    assert [(m.details, m.column_letter) for m in errors] == [("Invalid character: #", "J")]


def test_duplicate_sys_id(worksheet_builder, groups_store):
    ws = worksheet_builder([HEADER, roster_row("G1", 1, "A"), roster_row("G1", 2, "B")])
    pipeline = run(ws, groups_store)
    errors = pipeline.get_errors()
    assert len(errors) == 1
    assert (errors[0].row_number, errors[0].column_letter) == (3, "C")
    assert "first on row 2" in errors[0].details
    assert pipeline.output.natural_keys("updated") == ["G1"]


def test_invalid_row_still_protects_group_from_deactivation(worksheet_builder, groups_store):
    ws = worksheet_builder([HEADER, roster_row("G1", 1, "Group One"), roster_row("G2", "lots", "Dropped Group")])
    pipeline = run(ws, groups_store)
    assert pipeline.has_errors()
    assert pipeline.output["deactivated"] == []


def test_missing_sys_id_and_title(worksheet_builder, groups_store):
    pipeline = run(worksheet_builder([HEADER, roster_row(None, 5, None)]), groups_store)
    assert [m.details for m in pipeline.get_errors()] == ["Sys ID cannot be blank", "Title cannot be blank"]
