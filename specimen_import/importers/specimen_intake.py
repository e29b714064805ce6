from __future__ import annotations

from specimen_import.importers.specimen_checkin import CheckinDecisionImporter
from specimen_import.models.domain import Tube, TubeStatus

"""Specimen intake sheet: short three-column accept / reject list."""

__all__ = [
    "SpecimenIntakeImporter",
]


class SpecimenIntakeImporter(CheckinDecisionImporter):
    name = "specimen-intake"
    title = "Specimen Intake"
    username_field = "technicianUsername"
    username_label = "Technician username"
    decision_values = {"ACCEPT": TubeStatus.ACCEPTED, "REJECT": TubeStatus.REJECTED}
    default_column_map = {
        "tubeId": "A",
        "acceptedStatus": "B",
        "technicianUsername": "C",
    }

    def blank_tube_message(self) -> str:
        return "Tube ID cannot be empty"

    def tube_not_found_message(self, tube_id: str) -> str:
        return f'Tube ID "{tube_id}" does not exist'

    def wrong_status_message(self, tube: Tube) -> str:
        return f'Tube ID "{tube.accession_id}" cannot be checked in because it has status {tube.status_text}'
