# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Reads the LOINC table (Loinc.csv) and builds one FHIR concept per LOINC number.

Loinc.csv is a quoted, comma-separated table with a header row. Columns are
looked up by name, so releases that add or reorder columns still parse. The
display is LONG_COMMON_NAME, the definition spells out the major axes, and
the part columns become valueString properties.
"""
import csv
import re
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from rich.console import Console

from .assembler import AssemblyStats
from .config import Settings
from .models import CodeSystemHeader, ConceptProperty, FhirConcept, LoincRecord, PropertyDefinition
from .parser import MAX_REPORTED_MALFORMED
from .vocabulary import (
    LOINC, LOINC_PROPERTY_COLUMNS, LOINC_RESOURCE_ID, placeholder_definition, placeholder_display,
)

console = Console()

LOINC_VERSION_PATTERN = re.compile(r"Loinc_(\d+\.\d+)", re.IGNORECASE)
DEPRECATED_STATUS = "DEPRECATED"

# Loinc.csv column -> LoincRecord field
COLUMN_FIELDS = {
    "LOINC_NUM": "loinc_num",
    "LONG_COMMON_NAME": "long_common_name",
    "SHORTNAME": "shortname",
    "COMPONENT": "component",
    "PROPERTY": "property",
    "TIME_ASPCT": "time_aspct",
    "SYSTEM": "system",
    "SCALE_TYP": "scale_typ",
    "METHOD_TYP": "method_typ",
    "CLASS": "loinc_class",
    "CLASSTYPE": "classtype",
    "STATUS": "status",
}

LOINC_PROPERTY_SCHEMA = [
    PropertyDefinition(code=code, uri=f"{LOINC.system}#{code}", description=description, type="string")
    for _, code, description in LOINC_PROPERTY_COLUMNS
] + [
    PropertyDefinition(
        code="inactive", uri="http://hl7.org/fhir/concept-properties#inactive",
        description="True when the term's STATUS is DEPRECATED", type="boolean",
    ),
]


def extract_loinc_version(root: Path, source_file: Path) -> str:
    """
    The version URI from a 'Loinc_<major>.<minor>' directory between the
    table and the release root, or the 'current' version when there is none.
    """
    root, source_file = Path(root), Path(source_file)
    try:
        parts = [root.name] + list(source_file.relative_to(root).parts)
    except ValueError:
        parts = list(source_file.parts)
    for part in reversed(parts):
        match = LOINC_VERSION_PATTERN.search(part)
        if match:
            return f"{LOINC.system}/version/{match.group(1)}"
    console.log(f"[yellow]No LOINC version found in {source_file}; using 'current'.[/yellow]")
    return f"{LOINC.system}/version/current"


def build_loinc_header(version: str) -> CodeSystemHeader:
    return CodeSystemHeader(
        id=LOINC_RESOURCE_ID,
        url=LOINC.system,
        version=version,
        name=LOINC.name,
        title=LOINC.label,
        date=date.today().isoformat(),
        publisher=LOINC.publisher,
        description=LOINC.description,
        case_sensitive=True,
        compositional=False,
        property=LOINC_PROPERTY_SCHEMA,
    )


def build_loinc_definition(record: LoincRecord) -> str:
    """LONG_COMMON_NAME followed by the component, property, system and scale axes that are present."""
    definition = record.long_common_name
    for label, value in (
        ("Component", record.component),
        ("Property", record.property),
        ("System", record.system),
        ("Scale", record.scale_typ),
    ):
        if value:
            definition += f" ({label}: {value})"
    return definition


class LoincCsvReader:
    """
    A re-readable stream of LoincRecord rows from Loinc.csv.
    Rows without a LOINC_NUM are skipped with a warning.
    """

    def __init__(self, path: Path, verbose: bool = False):
        self.path = Path(path)
        self.verbose = verbose
        self.malformed_count = 0

    def __iter__(self) -> Iterator[LoincRecord]:
        self.malformed_count = 0
        # utf-8-sig: some distributions start the table with a byte order mark
        with self.path.open("r", encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            if "LOINC_NUM" not in (reader.fieldnames or []):
                raise ValueError(f"{self.path.name} is not a LOINC table: no LOINC_NUM column in its header")
            if self.verbose:
                console.log(f"Reading {self.path.name} ({len(reader.fieldnames)} columns)")
            for row in reader:
                if not (row.get("LOINC_NUM") or "").strip():
                    self._report_malformed(reader.line_num)
                    continue
                yield LoincRecord(**{
                    field: (row.get(column) or "").strip() for column, field in COLUMN_FIELDS.items()
                })
        if self.malformed_count > MAX_REPORTED_MALFORMED:
            console.log(f"[yellow]{self.path.name}: skipped {self.malformed_count} rows without a LOINC_NUM.[/yellow]")

    def _report_malformed(self, line_number: int):
        self.malformed_count += 1
        if self.malformed_count <= MAX_REPORTED_MALFORMED:
            console.log(f"[yellow]Skipping row ending on line {line_number} in {self.path.name}: no LOINC_NUM.[/yellow]")


class LoincConceptBuilder:
    """Turns LOINC rows into FHIR concepts in file order; the first row for a LOINC number wins."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.stats = AssemblyStats()

    def assemble(self, records: Iterable[LoincRecord]) -> Iterator[FhirConcept]:
        seen = set()
        for record in records:
            if record.loinc_num in seen:
                self.stats.duplicates += 1
                continue
            seen.add(record.loinc_num)
            if record.status == DEPRECATED_STATUS and not self.settings.include_inactive_concepts:
                self.stats.skipped_inactive += 1
                continue
            self.stats.emitted += 1
            yield self.build_concept(record)
        if self.settings.verbose:
            console.log(
                f"Built {self.stats.emitted} LOINC concepts ({self.stats.duplicates} duplicate rows, "
                f"{self.stats.skipped_inactive} deprecated skipped)."
            )

    def build_concept(self, record: LoincRecord) -> FhirConcept:
        code = record.loinc_num
        display = record.long_common_name or record.shortname
        if not display:
            self.stats.placeholder_displays += 1
            display = placeholder_display(LOINC, code)
        definition = build_loinc_definition(record) if record.long_common_name else placeholder_definition(LOINC, code)
        return FhirConcept(code=code, display=display, definition=definition, property=self._properties(record))

    def _properties(self, record: LoincRecord) -> List[ConceptProperty]:
        properties = []
        for column, code, _ in LOINC_PROPERTY_COLUMNS:
            value: Optional[str] = getattr(record, COLUMN_FIELDS[column])
            if value:
                properties.append(ConceptProperty(code=code, value_string=value))
        if record.status == DEPRECATED_STATUS:
            properties.append(ConceptProperty(code="inactive", value_boolean=True))
        return properties
