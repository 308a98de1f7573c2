# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import re
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console

from .layout import FileKind, ReleaseLayout
from .models import ReleaseMetadata
from .vocabulary import EDITION_BY_COUNTRY, get_edition_name

console = Console()

NAMESPACE_PATTERN = re.compile(
    r"(" + "|".join(sorted(EDITION_BY_COUNTRY, key=len, reverse=True)) + r")(\d{7})"
)
DATE_PATTERN = re.compile(r"(?<!\d)((?:19|20)\d{6})(?!\d)")
INTERNATIONAL_PATTERN = re.compile(r"(International|_INT_|_INT\b)")

HEADER_SCAN_CHARS = 2000


def _read_head(path: Path, limit: int = HEADER_SCAN_CHARS) -> str:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            return f.read(limit)
    except OSError as e:
        console.log(f"[yellow]Could not read {path.name} for release metadata: {e}[/yellow]")
        return ""


def _first_match(pattern: re.Pattern, texts: Iterable[str]) -> Optional[re.Match]:
    for text in texts:
        match = pattern.search(text)
        if match:
            return match
    return None


def extract_namespace(layout: ReleaseLayout) -> str:
    """
    Finds the edition namespace (e.g. 'US1000124') in the release directory name,
    then the concept file name, then the head of the concept file.
    International releases carry no numeric namespace and map to 'INT'.
    """
    concept_file = layout.require(FileKind.CONCEPT)
    sources = [layout.root.name, concept_file.name]
    match = _first_match(NAMESPACE_PATTERN, sources + [_read_head(concept_file)])
    if match:
        return f"{match.group(1)}{match.group(2)}"
    if _first_match(INTERNATIONAL_PATTERN, sources):
        return "INT"
    raise ValueError(
        f"Could not determine the SNOMED CT namespace from {layout.root.name} or {concept_file.name}"
    )


def extract_release_date(layout: ReleaseLayout) -> str:
    """Finds the yyyymmdd release date with the same precedence as the namespace."""
    concept_file = layout.require(FileKind.CONCEPT)
    match = _first_match(DATE_PATTERN, [layout.root.name, concept_file.name, _read_head(concept_file)])
    if not match:
        raise ValueError(
            f"Could not determine the SNOMED CT release date from {layout.root.name} or {concept_file.name}"
        )
    return match.group(1)


def extract_release_metadata(layout: ReleaseLayout) -> ReleaseMetadata:
    namespace = extract_namespace(layout)
    release_date = extract_release_date(layout)
    metadata = ReleaseMetadata(
        namespace=namespace,
        release_date=release_date,
        edition=get_edition_name(namespace),
    )
    console.log(
        f"Release: [bold cyan]{metadata.edition}[/bold cyan] "
        f"namespace={metadata.namespace} version={metadata.version_uri}"
    )
    return metadata
