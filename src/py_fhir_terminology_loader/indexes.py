# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
In-memory join indexes for concept assembly.

Descriptions, text definitions and relationships are drained completely into
dictionaries keyed by concept id before the concept file is streamed. This
is the one place the pipeline holds a whole file's worth of rows, and its
memory use grows with the size of the release.
"""
from collections import defaultdict
from typing import Dict, Iterable, List

from rich.console import Console

from .models import LabelRecord, RelationshipRecord
from .parser import RF2Parser

console = Console()


class JoinIndexes:
    """Read-only lookups built once per run by JoinIndexBuilder."""

    def __init__(
        self,
        labels: Dict[str, List[LabelRecord]],
        definitions: Dict[str, List[LabelRecord]],
        relationships: Dict[str, List[RelationshipRecord]],
    ):
        self.labels = labels
        self.definitions = definitions
        self.relationships = relationships

    def labels_for(self, concept_id: str) -> List[LabelRecord]:
        return self.labels.get(concept_id, [])

    def definitions_for(self, concept_id: str) -> List[LabelRecord]:
        return self.definitions.get(concept_id, [])

    def relationships_for(self, concept_id: str) -> List[RelationshipRecord]:
        return self.relationships.get(concept_id, [])


def index_labels(records: Iterable[LabelRecord]) -> Dict[str, List[LabelRecord]]:
    """Groups active labels by concept id, keeping file order within each group."""
    index = defaultdict(list)
    for record in records:
        if record.active:
            index[record.concept_id].append(record)
    return dict(index)


def index_relationships(records: Iterable[RelationshipRecord]) -> Dict[str, List[RelationshipRecord]]:
    """Groups active relationships by source concept id, keeping file order."""
    index = defaultdict(list)
    for record in records:
        if record.active:
            index[record.source_id].append(record)
    return dict(index)


class JoinIndexBuilder:
    def __init__(self, parser: RF2Parser, verbose: bool = False):
        self.parser = parser
        self.verbose = verbose

    def build(self) -> JoinIndexes:
        console.log("Building description index...")
        labels = index_labels(self.parser.descriptions())
        console.log(f"Indexed descriptions for {len(labels)} concepts.")

        console.log("Building text definition index...")
        definitions = index_labels(self.parser.text_definitions())
        console.log(f"Indexed text definitions for {len(definitions)} concepts.")

        console.log("Building relationship index...")
        relationships = index_relationships(self.parser.relationships())
        console.log(f"Indexed relationships for {len(relationships)} source concepts.")

        if self.verbose:
            label_rows = sum(len(v) for v in labels.values())
            relationship_rows = sum(len(v) for v in relationships.values())
            console.log(f"Join indexes hold {label_rows} active descriptions and {relationship_rows} active relationships.")

        return JoinIndexes(labels, definitions, relationships)
