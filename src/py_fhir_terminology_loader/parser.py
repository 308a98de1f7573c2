# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Handles the parsing of SNOMED CT RF2 release files.

RF2 files are UTF-8, tab-delimited, with one header row. Each reader streams
its file line by line and yields typed records, so the concept file (the
largest) is never loaded whole. Streams are re-readable: iterating a stream a
second time re-opens the file.

Malformed rows (too few fields, or an id column that is not numeric) are
skipped with a warning and never abort the run.
"""
from pathlib import Path
from typing import Callable, Generic, Iterator, List, Optional, TypeVar

from rich.console import Console

from .layout import FileKind, ReleaseLayout
from .models import ConceptRecord, LabelRecord, RelationshipRecord

console = Console()

T = TypeVar("T")

# Column indices for RF2 files
# sct2_Concept: id effectiveTime active moduleId definitionStatusId
C_ID, C_EFFECTIVE_TIME, C_ACTIVE, C_MODULE_ID, C_DEFINITION_STATUS_ID = range(5)
CONCEPT_MIN_FIELDS = 5
# sct2_Description / sct2_TextDefinition: id effectiveTime active moduleId conceptId languageCode typeId term caseSignificanceId
D_ID, D_EFFECTIVE_TIME, D_ACTIVE, D_MODULE_ID, D_CONCEPT_ID, D_LANGUAGE_CODE, D_TYPE_ID, D_TERM, D_CASE_SIGNIFICANCE_ID = range(9)
DESCRIPTION_MIN_FIELDS = 9
# sct2_Relationship: id effectiveTime active moduleId sourceId destinationId relationshipGroup typeId characteristicTypeId modifierId
R_ID, R_EFFECTIVE_TIME, R_ACTIVE, R_MODULE_ID, R_SOURCE_ID, R_DESTINATION_ID, R_GROUP, R_TYPE_ID, R_CHARACTERISTIC_TYPE_ID, R_MODIFIER_ID = range(10)
RELATIONSHIP_MIN_FIELDS = 10

# Warnings beyond this count per file are summarised instead of printed
MAX_REPORTED_MALFORMED = 20


def _concept_from_fields(fields: List[str]) -> ConceptRecord:
    return ConceptRecord(
        id=fields[C_ID],
        effective_time=fields[C_EFFECTIVE_TIME],
        active=fields[C_ACTIVE] == "1",
        module_id=fields[C_MODULE_ID],
        definition_status_id=fields[C_DEFINITION_STATUS_ID],
    )


def _label_from_fields(fields: List[str]) -> LabelRecord:
    return LabelRecord(
        id=fields[D_ID],
        effective_time=fields[D_EFFECTIVE_TIME],
        active=fields[D_ACTIVE] == "1",
        module_id=fields[D_MODULE_ID],
        concept_id=fields[D_CONCEPT_ID],
        language_code=fields[D_LANGUAGE_CODE],
        type_id=fields[D_TYPE_ID],
        term=fields[D_TERM],
        case_significance_id=fields[D_CASE_SIGNIFICANCE_ID],
    )


def _relationship_from_fields(fields: List[str]) -> RelationshipRecord:
    return RelationshipRecord(
        id=fields[R_ID],
        effective_time=fields[R_EFFECTIVE_TIME],
        active=fields[R_ACTIVE] == "1",
        module_id=fields[R_MODULE_ID],
        source_id=fields[R_SOURCE_ID],
        destination_id=fields[R_DESTINATION_ID],
        relationship_group=fields[R_GROUP],
        type_id=fields[R_TYPE_ID],
        characteristic_type_id=fields[R_CHARACTERISTIC_TYPE_ID],
        modifier_id=fields[R_MODIFIER_ID],
    )


class RecordStream(Generic[T]):
    """
    A re-readable, line-oriented stream of typed records from one RF2 file.

    A stream with no path is empty; this is how optional file kinds that the
    release does not ship are represented.
    """

    def __init__(
        self,
        path: Optional[Path],
        min_fields: int,
        factory: Callable[[List[str]], T],
        verbose: bool = False,
    ):
        self.path = path
        self.min_fields = min_fields
        self.factory = factory
        self.verbose = verbose
        self.malformed_count = 0

    def __iter__(self) -> Iterator[T]:
        if self.path is None:
            return
        self.malformed_count = 0
        # Rows end in CRLF; only \n terminates a row so a stray \r in a term does not split it
        with self.path.open("r", encoding="utf-8", newline="\n") as f:
            header = f.readline()
            if self.verbose and header:
                console.log(f"Reading {self.path.name} (header: {header.strip()!r})")
            for line_number, line in enumerate(f, start=2):
                line = line.rstrip("\r\n")
                if not line.strip():
                    continue
                fields = line.split("\t")
                if len(fields) < self.min_fields or not fields[0].isdigit():
                    self._report_malformed(line_number, len(fields))
                    continue
                yield self.factory(fields)
        if self.malformed_count > MAX_REPORTED_MALFORMED:
            console.log(
                f"[yellow]{self.path.name}: skipped {self.malformed_count} malformed lines in total.[/yellow]"
            )

    def _report_malformed(self, line_number: int, field_count: int):
        self.malformed_count += 1
        if self.malformed_count <= MAX_REPORTED_MALFORMED:
            console.log(
                f"[yellow]Skipping malformed line {line_number} in {self.path.name}: "
                f"expected at least {self.min_fields} fields, got {field_count}.[/yellow]"
            )


class RF2Parser:
    """Opens the record streams of one SNOMED CT release."""

    def __init__(self, layout: ReleaseLayout, verbose: bool = False):
        self.layout = layout
        self.verbose = verbose

    def _optional_path(self, kind: FileKind) -> Optional[Path]:
        path = self.layout.find(kind)
        if path is None:
            console.log(f"[yellow]No {kind.value} file found in {self.layout.terminology_dir}; continuing without it.[/yellow]")
        return path

    def concepts(self) -> RecordStream[ConceptRecord]:
        """The primary concept file is mandatory; a missing file raises FileNotFoundError."""
        path = self.layout.require(FileKind.CONCEPT)
        return RecordStream(path, CONCEPT_MIN_FIELDS, _concept_from_fields, self.verbose)

    def descriptions(self) -> RecordStream[LabelRecord]:
        return RecordStream(
            self._optional_path(FileKind.DESCRIPTION), DESCRIPTION_MIN_FIELDS, _label_from_fields, self.verbose
        )

    def text_definitions(self) -> RecordStream[LabelRecord]:
        return RecordStream(
            self._optional_path(FileKind.TEXT_DEFINITION), DESCRIPTION_MIN_FIELDS, _label_from_fields, self.verbose
        )

    def relationships(self) -> RecordStream[RelationshipRecord]:
        return RecordStream(
            self._optional_path(FileKind.RELATIONSHIP), RELATIONSHIP_MIN_FIELDS, _relationship_from_fields, self.verbose
        )
