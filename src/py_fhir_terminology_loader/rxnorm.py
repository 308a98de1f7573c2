# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Reads RXNCONSO.RRF from an RxNorm release and builds one FHIR concept per RXCUI.

RXNCONSO.RRF is pipe-delimited with a trailing pipe and no header row. It has
one row per atom, so an RXCUI appears on many rows; the first row seen for an
RXCUI supplies the concept.
"""
import csv
import re
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, List

from rich.console import Console

from .assembler import AssemblyStats
from .config import Settings
from .models import CodeSystemHeader, ConceptProperty, FhirConcept, PropertyDefinition, RxNormRecord
from .parser import MAX_REPORTED_MALFORMED
from .vocabulary import (
    RXNORM, RXNORM_PROPERTIES, RXNORM_RESOURCE_ID, placeholder_definition, placeholder_display,
)

console = Console()

# RXNCONSO.RRF column indices
(
    RXCUI_I, LAT_I, TS_I, LUI_I, STT_I, SUI_I, ISPREF_I, RXAUI_I, SAUI_I,
    SCUI_I, SDUI_I, SAB_I, TTY_I, CODE_I, STR_I, SRL_I, SUPPRESS_I, CVF_I,
) = range(18)
RXNCONSO_MIN_FIELDS = 18

RXNORM_VERSION_PATTERN = re.compile(r"(?<!\d)(\d{8})(?!\d)")

RXNORM_PROPERTY_SCHEMA = [
    PropertyDefinition(code=code, uri=f"{RXNORM.system}#{code}", description=description, type="string")
    for code, description in RXNORM_PROPERTIES
]


def extract_rxnorm_version(root: Path, source_file: Path) -> str:
    """
    The version URI from the first 8-digit release date (e.g. RxNorm_full_09022025)
    between the RRF file and the release root, or the 'current' version.
    """
    root, source_file = Path(root), Path(source_file)
    try:
        parts = [root.name] + list(source_file.relative_to(root).parts[:-1])
    except ValueError:
        parts = list(source_file.parts[:-1])
    for part in reversed(parts):
        match = RXNORM_VERSION_PATTERN.search(part)
        if match:
            return f"{RXNORM.system}/version/{match.group(1)}"
    console.log(f"[yellow]No RxNorm release date found in {source_file}; using 'current'.[/yellow]")
    return f"{RXNORM.system}/version/current"


def build_rxnorm_header(version: str) -> CodeSystemHeader:
    return CodeSystemHeader(
        id=RXNORM_RESOURCE_ID,
        url=RXNORM.system,
        version=version,
        name=RXNORM.name,
        title=RXNORM.label,
        date=date.today().isoformat(),
        publisher=RXNORM.publisher,
        description=RXNORM.description,
        case_sensitive=True,
        compositional=False,
        property=RXNORM_PROPERTY_SCHEMA,
    )


class RxnConsoReader:
    """
    A re-readable stream of RxNormRecord rows from RXNCONSO.RRF.
    """

    def __init__(self, path: Path, verbose: bool = False):
        self.path = Path(path)
        self.verbose = verbose
        self.malformed_count = 0

    def __iter__(self) -> Iterator[RxNormRecord]:
        self.malformed_count = 0
        if self.verbose:
            console.log(f"Reading {self.path.name}")
        with self.path.open("r", encoding="utf-8", newline="") as f:
            # RRF has no quoting; a NUL quotechar keeps '"' in strings as data
            reader = csv.reader(f, delimiter="|", quotechar="\x00")
            for line_number, row in enumerate(reader, start=1):
                if not row:
                    continue
                if len(row) < RXNCONSO_MIN_FIELDS or not row[RXCUI_I].strip().isdigit():
                    self._report_malformed(line_number, len(row))
                    continue
                yield RxNormRecord(
                    rxcui=row[RXCUI_I].strip(),
                    lat=row[LAT_I],
                    sab=row[SAB_I],
                    tty=row[TTY_I],
                    code=row[CODE_I],
                    term=row[STR_I].strip(),
                    ispref=row[ISPREF_I],
                    suppress=row[SUPPRESS_I],
                )
        if self.malformed_count > MAX_REPORTED_MALFORMED:
            console.log(f"[yellow]{self.path.name}: skipped {self.malformed_count} malformed rows.[/yellow]")

    def _report_malformed(self, line_number: int, field_count: int):
        self.malformed_count += 1
        if self.malformed_count <= MAX_REPORTED_MALFORMED:
            console.log(
                f"[yellow]Skipping malformed line {line_number} in {self.path.name}: "
                f"{field_count} fields or a non-numeric RXCUI.[/yellow]"
            )


class RxNormConceptBuilder:
    """Folds the atoms of each RXCUI into one FHIR concept; the first atom wins."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.stats = AssemblyStats()

    def assemble(self, records: Iterable[RxNormRecord]) -> Iterator[FhirConcept]:
        seen = set()
        for record in records:
            if record.rxcui in seen:
                self.stats.duplicates += 1
                continue
            seen.add(record.rxcui)
            self.stats.emitted += 1
            yield self.build_concept(record)
        if self.settings.verbose:
            console.log(f"Built {self.stats.emitted} RxNorm concepts from {self.stats.emitted + self.stats.duplicates} atoms.")

    def build_concept(self, record: RxNormRecord) -> FhirConcept:
        code = record.rxcui
        if record.term:
            display = definition = record.term
        else:
            self.stats.placeholder_displays += 1
            display = placeholder_display(RXNORM, code)
            definition = placeholder_definition(RXNORM, code)
        return FhirConcept(code=code, display=display, definition=definition, property=self._properties(record))

    def _properties(self, record: RxNormRecord) -> List[ConceptProperty]:
        return [
            ConceptProperty(code=code, value_string=value)
            for (code, _), value in zip(RXNORM_PROPERTIES, (record.tty, record.sab, record.ispref))
            if value
        ]
