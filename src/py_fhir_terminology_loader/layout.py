# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Locates the source files inside an unpacked terminology release.

SNOMED CT releases are distributed with several directory conventions (a
Full and a Snapshot tree, or a bare Terminology directory). All lookups go
through ReleaseLayout so the list of conventions lives in one place. LOINC
and RxNorm releases ship their concepts in a single table, found with
find_source_file.
"""
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from rich.console import Console

console = Console()

TERMINOLOGY_SUBPATHS: Tuple[str, ...] = (
    "Full/Terminology",
    "Snapshot/Terminology",
    "Terminology",
    ".",
)


class FileKind(str, Enum):
    CONCEPT = "concept"
    DESCRIPTION = "description"
    RELATIONSHIP = "relationship"
    TEXT_DEFINITION = "text_definition"


# Glob patterns tried in order for each kind
FILE_PATTERNS: Dict[FileKind, Tuple[str, ...]] = {
    FileKind.CONCEPT: ("sct2_Concept_Full*.txt", "sct2_Concept_Snapshot*.txt", "sct2_Concept_*.txt"),
    FileKind.DESCRIPTION: ("sct2_Description_*.txt",),
    FileKind.RELATIONSHIP: ("sct2_Relationship_*.txt",),
    FileKind.TEXT_DEFINITION: ("sct2_TextDefinition_*.txt",),
}

# Files that share a prefix with a kind but have a different column layout
EXCLUDED_MARKERS: Tuple[str, ...] = ("StatedRelationship", "ConcreteValues")

# Single-table releases: Loinc_2.81/LoincTable/Loinc.csv and RxNorm_full_09022025/rrf/RXNCONSO.RRF
LOINC_SUBPATHS: Tuple[str, ...] = ("LoincTable", ".")
LOINC_FILE_PATTERNS: Tuple[str, ...] = ("Loinc.csv", "LoincTableCore.csv")
RXNORM_SUBPATHS: Tuple[str, ...] = ("rrf", ".")
RXNORM_FILE_PATTERNS: Tuple[str, ...] = ("RXNCONSO.RRF",)


def find_source_file(root: Path, patterns: Sequence[str], subpaths: Sequence[str]) -> Optional[Path]:
    """
    The first file matching one of `patterns` in the first of `subpaths` that
    holds one, or None. Patterns are tried in order within each directory.
    """
    root = Path(root)
    for candidate in subpaths:
        directory = (root / candidate) if candidate != "." else root
        if not directory.is_dir():
            continue
        for pattern in patterns:
            matches = sorted(p for p in directory.glob(pattern) if p.is_file())
            if matches:
                return matches[0]
    return None


class ReleaseLayout:
    """
    Resolves the terminology directory of a release and the one file per kind
    within it.
    """

    def __init__(self, root: Path, subpaths: Sequence[str] = TERMINOLOGY_SUBPATHS):
        self.root = Path(root)
        self.subpaths = tuple(subpaths)
        if not self.root.is_dir():
            raise FileNotFoundError(f"Release directory not found: {self.root}")
        self.terminology_dir = self._find_terminology_dir()

    def _find_terminology_dir(self) -> Path:
        # A candidate only counts if it actually holds a concept file
        for candidate in self.subpaths:
            path = (self.root / candidate) if candidate != "." else self.root
            if path.is_dir() and self._match(path, FileKind.CONCEPT):
                return path
        tried = ", ".join(self.subpaths)
        raise FileNotFoundError(
            f"No sct2_Concept_*.txt file found under {self.root} (tried: {tried})"
        )

    def _match(self, directory: Path, kind: FileKind) -> List[Path]:
        for pattern in FILE_PATTERNS[kind]:
            matches = sorted(
                p for p in directory.glob(pattern)
                if p.is_file() and not any(marker in p.name for marker in EXCLUDED_MARKERS)
            )
            if matches:
                return matches
        return []

    def find(self, kind: FileKind) -> Optional[Path]:
        """
        Returns the file for `kind`, or None if the release does not ship one.
        When several files match, the first by name is used and the rest are reported.
        """
        matches = self._match(self.terminology_dir, kind)
        if not matches:
            return None
        if len(matches) > 1:
            console.log(
                f"[yellow]Multiple {kind.value} files found; using {matches[0].name} "
                f"and ignoring {', '.join(m.name for m in matches[1:])}[/yellow]"
            )
        return matches[0]

    def require(self, kind: FileKind) -> Path:
        path = self.find(kind)
        if path is None:
            raise FileNotFoundError(f"Required {kind.value} file not found in {self.terminology_dir}")
        return path
