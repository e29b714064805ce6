from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, ClassVar

from specimen_import.models.domain import Specimen, Tube, WellPlate
from specimen_import.models.import_result import ImportOutput
from specimen_import.models.workbook import Worksheet, column_letter
from specimen_import.services.pipeline import ImportRun, RowContext
from specimen_import.services.resolution import ResolutionCache
from specimen_import.services.validation import FieldValidator

"""Importer strategy contract.

A strategy describes one document type: its column map, field validators,
how references are resolved and how a valid row becomes classified records.
The ImportPipeline drives it; strategies never loop over rows themselves.

Hooks, in call order:
    check_structure(worksheet)   structural checks, raise StructuralImportError
    begin(run)                   per-run setup (caches, header values)
    field_validators()           list of callables run on every non-blank row
    resolve(ctx)                 reference lookups / workflow guards / duplicates
    apply(ctx)                   mutate records, yield (classification, record)
    finish(run, output)          after the last row (e.g. deactivations)
"""

__all__ = [
    "ImportStrategy",
    "Classified",
]

Classified = tuple[str, Any]


class ImportStrategy(ABC):
    name: ClassVar[str]
    title: ClassVar[str]
    classifications: ClassVar[tuple[str, ...]]
    default_column_map: ClassVar[Mapping[str, str]]
    default_starting_row: ClassVar[int] = 2

    def __init__(
        self,
        *,
        column_map: Mapping[str, str] | None = None,
        starting_row: int | None = None,
    ) -> None:
        merged = dict(self.default_column_map)
        for field_name, letter in (column_map or {}).items():
            if field_name not in merged:
                raise KeyError(
                    f"{self.name}: unknown field '{field_name}' in column map "
                    f"(fields: {', '.join(self.default_column_map)})"
                )
            merged[field_name] = column_letter(letter)
        self._column_map = MappingProxyType(merged)
        self.starting_row = starting_row if starting_row is not None else self.default_starting_row
        if self.starting_row < 1:
            raise ValueError(f"{self.name}: starting_row must be >= 1")

    @property
    def column_map(self) -> Mapping[str, str]:
        return self._column_map

    def check_structure(self, worksheet: Worksheet) -> None:
        return None

    def begin(self, run: ImportRun) -> None:
        return None

    @abstractmethod
    def field_validators(self) -> list[FieldValidator]:
        raise NotImplementedError

    def resolve(self, ctx: RowContext) -> None:
        return None

    @abstractmethod
    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        raise NotImplementedError

    def finish(self, run: ImportRun, output: ImportOutput) -> None:
        return None

    # --- shared resolution helpers ---------------------------------------

    @staticmethod
    def tubes(run: ImportRun) -> ResolutionCache:
        return run.cache("tube", lambda key: run.uow.get(Tube, key))

    @staticmethod
    def specimens(run: ImportRun) -> ResolutionCache:
        return run.cache("specimen", lambda key: run.uow.get(Specimen, key))

    @staticmethod
    def plates(run: ImportRun) -> ResolutionCache:
        return run.cache("plate", lambda key: run.uow.get(WellPlate, key))

    @staticmethod
    def find_or_create_plate(run: ImportRun, barcode: str) -> WellPlate:
        cache = ImportStrategy.plates(run)
        plate = cache.resolve(barcode)
        if plate is None:
            plate = run.uow.add(WellPlate(barcode=barcode))
            cache.put(barcode, plate)
        return plate

    def __repr__(self) -> str:  # pragma: no cover
        return f"{type(self).__name__}(starting_row={self.starting_row}, column_map={dict(self._column_map)})"
