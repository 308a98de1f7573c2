# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
One handler per supported vocabulary. A handler knows how to recognise its
release layout, how to describe the CodeSystem it produces, and how to stream
that CodeSystem's concepts. The importer only talks to handlers, so the
upload stages are the same for every vocabulary.
"""
from pathlib import Path
from typing import Dict, Iterator, Optional, Type

from rich.console import Console

from .assembler import ConceptAssembler, build_code_system_header
from .config import Settings
from .indexes import JoinIndexBuilder
from .layout import (
    LOINC_FILE_PATTERNS, LOINC_SUBPATHS, RXNORM_FILE_PATTERNS, RXNORM_SUBPATHS,
    FileKind, ReleaseLayout, find_source_file,
)
from .loinc import LoincConceptBuilder, LoincCsvReader, build_loinc_header, extract_loinc_version
from .metadata import extract_release_metadata
from .models import CodeSystemHeader, FhirConcept, VocabularyInfo, VocabularyKind
from .parser import RF2Parser
from .rxnorm import RxNormConceptBuilder, RxnConsoReader, build_rxnorm_header, extract_rxnorm_version
from .vocabulary import LOINC, RXNORM, SNOMED, get_vocabulary

console = Console()


class VocabularyHandler:
    vocabulary: VocabularyInfo

    def __init__(self, source_dir: Path, settings: Settings):
        self.source_dir = Path(source_dir)
        self.settings = settings

    @classmethod
    def detect(cls, root: Path) -> bool:
        """True when `root` looks like a release of this vocabulary."""
        raise NotImplementedError

    def build_header(self) -> CodeSystemHeader:
        raise NotImplementedError

    def concepts(self) -> Iterator[FhirConcept]:
        """
        Concepts in source order. Any source file that is missing must raise
        here, before the first concept is produced.
        """
        raise NotImplementedError


class SnomedHandler(VocabularyHandler):
    vocabulary = SNOMED

    def __init__(self, source_dir: Path, settings: Settings):
        super().__init__(source_dir, settings)
        self.layout = ReleaseLayout(self.source_dir)
        self.metadata = extract_release_metadata(self.layout)

    @classmethod
    def detect(cls, root: Path) -> bool:
        try:
            return ReleaseLayout(root).find(FileKind.CONCEPT) is not None
        except FileNotFoundError:
            return False

    def build_header(self) -> CodeSystemHeader:
        return build_code_system_header(self.metadata)

    def concepts(self) -> Iterator[FhirConcept]:
        parser = RF2Parser(self.layout, verbose=self.settings.verbose)
        # Open the concept stream first so a missing concept file fails before any indexing
        records = parser.concepts()
        indexes = JoinIndexBuilder(parser, verbose=self.settings.verbose).build()
        return ConceptAssembler(indexes, self.settings).assemble(records)


class LoincHandler(VocabularyHandler):
    vocabulary = LOINC

    def __init__(self, source_dir: Path, settings: Settings):
        super().__init__(source_dir, settings)
        self.source_file = find_source_file(self.source_dir, LOINC_FILE_PATTERNS, LOINC_SUBPATHS)
        if self.source_file is None:
            raise FileNotFoundError(f"No Loinc.csv found under {self.source_dir} (looked in LoincTable/ and the root)")

    @classmethod
    def detect(cls, root: Path) -> bool:
        return find_source_file(root, LOINC_FILE_PATTERNS, LOINC_SUBPATHS) is not None

    def build_header(self) -> CodeSystemHeader:
        return build_loinc_header(extract_loinc_version(self.source_dir, self.source_file))

    def concepts(self) -> Iterator[FhirConcept]:
        reader = LoincCsvReader(self.source_file, verbose=self.settings.verbose)
        return LoincConceptBuilder(self.settings).assemble(reader)


class RxNormHandler(VocabularyHandler):
    vocabulary = RXNORM

    def __init__(self, source_dir: Path, settings: Settings):
        super().__init__(source_dir, settings)
        self.source_file = find_source_file(self.source_dir, RXNORM_FILE_PATTERNS, RXNORM_SUBPATHS)
        if self.source_file is None:
            raise FileNotFoundError(f"No RXNCONSO.RRF found under {self.source_dir} (looked in rrf/ and the root)")

    @classmethod
    def detect(cls, root: Path) -> bool:
        return find_source_file(root, RXNORM_FILE_PATTERNS, RXNORM_SUBPATHS) is not None

    def build_header(self) -> CodeSystemHeader:
        return build_rxnorm_header(extract_rxnorm_version(self.source_dir, self.source_file))

    def concepts(self) -> Iterator[FhirConcept]:
        reader = RxnConsoReader(self.source_file, verbose=self.settings.verbose)
        return RxNormConceptBuilder(self.settings).assemble(reader)


# Tried in this order when the vocabulary is not given
HANDLERS: Dict[VocabularyKind, Type[VocabularyHandler]] = {
    VocabularyKind.SNOMED: SnomedHandler,
    VocabularyKind.LOINC: LoincHandler,
    VocabularyKind.RXNORM: RxNormHandler,
}


def detect_vocabulary(root: Path) -> VocabularyKind:
    """The first vocabulary whose release layout matches `root`."""
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Release directory not found: {root}")
    for kind, handler_class in HANDLERS.items():
        if handler_class.detect(root):
            return kind
    raise FileNotFoundError(f"No SNOMED CT, LOINC or RxNorm release found under {root}")


def select_handler(source_dir: Path, settings: Settings, kind: Optional[VocabularyKind] = None) -> VocabularyHandler:
    """
    The handler for `kind`, else for `settings.vocabulary`, else for the
    vocabulary detected from the directory layout.
    """
    kind = kind or settings.vocabulary
    if kind is None:
        kind = detect_vocabulary(source_dir)
        console.log(f"Detected a {HANDLERS[kind].vocabulary.label} release in {source_dir}.")
    return HANDLERS[get_vocabulary(kind).kind](source_dir, settings)
