# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from typing import Iterable, Iterator, List, Optional

from pydantic import BaseModel
from rich.console import Console

from .config import Settings
from .indexes import JoinIndexes
from .models import (
    CodeSystemHeader, Coding, ConceptProperty, ConceptRecord, Designation,
    Extension, FhirConcept, LabelRecord, PropertyDefinition, ReleaseMetadata,
)
from .vocabulary import (
    DESIGNATION_USE_CONTEXT_URL, FSN_TYPE_ID, IS_A_TYPE_ID, PREFERRED_ACCEPTABILITY,
    PREFERRED_ACCEPTABILITY_DISPLAY, SNOMED, SNOMED_NAME, SNOMED_PUBLISHER, SNOMED_SYSTEM,
    SYNONYM_TYPE_ID, US_ENGLISH_LANGUAGE_REFSET,
    get_description_type_display, get_relationship_type_display,
    placeholder_definition, placeholder_display,
)

console = Console()

CONCEPT_PROPERTY_SCHEMA = [
    PropertyDefinition(code="effectiveTime", description="Effective time of the concept row", type="string"),
    PropertyDefinition(code="moduleId", description="Module that owns the concept", type="code"),
    PropertyDefinition(code="definitionStatusId", description="Primitive or fully defined", type="code"),
    PropertyDefinition(
        code="parent", uri="http://hl7.org/fhir/concept-properties#parent",
        description="Is-a parent of the concept", type="code",
    ),
    PropertyDefinition(
        code="relationship",
        description="Destination of a non is-a relationship; valueString names the relationship type",
        type="code",
    ),
    PropertyDefinition(
        code="inactive", uri="http://hl7.org/fhir/concept-properties#inactive",
        description="True when the concept is inactive in this release", type="boolean",
    ),
]


def build_code_system_header(metadata: ReleaseMetadata) -> CodeSystemHeader:
    """Every CodeSystem field except the concept array."""
    return CodeSystemHeader(
        id=metadata.resource_id,
        url=SNOMED_SYSTEM,
        version=metadata.version_uri,
        name=SNOMED_NAME,
        title=f"{SNOMED.label} {metadata.edition}",
        date=metadata.iso_date,
        publisher=SNOMED_PUBLISHER,
        hierarchy_meaning="is-a",
        compositional=True,
        property=CONCEPT_PROPERTY_SCHEMA,
    )


def is_english(label: LabelRecord) -> bool:
    return label.language_code.lower().startswith("en")


class AssemblyStats(BaseModel):
    emitted: int = 0
    duplicates: int = 0
    skipped_inactive: int = 0
    placeholder_displays: int = 0


class ConceptAssembler:
    """
    Joins each concept row against the description and relationship indexes
    and yields one FHIR concept at a time, in concept file order.
    """

    def __init__(self, indexes: JoinIndexes, settings: Settings):
        self.indexes = indexes
        self.settings = settings
        self.stats = AssemblyStats()

    def assemble(self, records: Iterable[ConceptRecord]) -> Iterator[FhirConcept]:
        seen = set()
        for record in records:
            if record.id in seen:
                self.stats.duplicates += 1
                continue
            seen.add(record.id)
            if not record.active and not self.settings.include_inactive_concepts:
                self.stats.skipped_inactive += 1
                continue
            concept = self.build_concept(record)
            self.stats.emitted += 1
            yield concept
        if self.settings.verbose:
            console.log(
                f"Assembled {self.stats.emitted} concepts "
                f"({self.stats.duplicates} duplicate rows, {self.stats.skipped_inactive} inactive skipped, "
                f"{self.stats.placeholder_displays} without an English name)."
            )

    def build_concept(self, record: ConceptRecord) -> FhirConcept:
        labels = [
            label for label in self.indexes.labels_for(record.id)
            if is_english(label) and label.term.strip()
        ]
        display = self._choose_display(record.id, labels)
        designations = [self._designation(label.type_id, label.term, label.language_code) for label in labels]
        if not designations:
            designations = [self._designation(FSN_TYPE_ID, display, "en")]

        return FhirConcept(
            code=record.id,
            display=display,
            definition=self._choose_definition(record.id),
            designation=designations,
            property=self._properties(record),
        )

    def _choose_display(self, code: str, labels: List[LabelRecord]) -> str:
        for type_id in (FSN_TYPE_ID, SYNONYM_TYPE_ID):
            for label in labels:
                if label.type_id == type_id:
                    return label.term
        self.stats.placeholder_displays += 1
        return placeholder_display(SNOMED, code)

    def _choose_definition(self, code: str) -> str:
        for definition in self.indexes.definitions_for(code):
            if is_english(definition) and definition.term.strip():
                return definition.term
        return placeholder_definition(SNOMED, code)

    def _designation(self, type_id: str, value: str, language: str) -> Designation:
        type_coding = Coding(system=SNOMED_SYSTEM, code=type_id, display=get_description_type_display(type_id))
        use_context = Extension(
            url=DESIGNATION_USE_CONTEXT_URL,
            extension=[
                Extension(url="context", value_coding=Coding(system=SNOMED_SYSTEM, code=US_ENGLISH_LANGUAGE_REFSET)),
                Extension(
                    url="role",
                    value_coding=Coding(
                        system=SNOMED_SYSTEM, code=PREFERRED_ACCEPTABILITY, display=PREFERRED_ACCEPTABILITY_DISPLAY
                    ),
                ),
                Extension(url="type", value_coding=type_coding),
            ],
        )
        return Designation(extension=[use_context], language=language, use=type_coding, value=value)

    def _properties(self, record: ConceptRecord) -> List[ConceptProperty]:
        properties = [
            ConceptProperty(code="effectiveTime", value_string=record.effective_time),
            ConceptProperty(code="moduleId", value_code=record.module_id),
            ConceptProperty(code="definitionStatusId", value_code=record.definition_status_id),
        ]
        relationships = self.indexes.relationships_for(record.id)
        parents = [rel for rel in relationships if rel.type_id == IS_A_TYPE_ID]
        others = [rel for rel in relationships if rel.type_id != IS_A_TYPE_ID]

        properties.extend(
            ConceptProperty(code="parent", value_code=rel.destination_id)
            for rel in _capped(parents, self.settings.max_parent_properties)
        )
        properties.extend(
            ConceptProperty(
                code="relationship",
                value_code=rel.destination_id,
                value_string=get_relationship_type_display(rel.type_id),
            )
            for rel in _capped(others, self.settings.max_relationship_properties)
        )
        if not record.active:
            properties.append(ConceptProperty(code="inactive", value_boolean=True))
        return properties


def _capped(items: list, limit: Optional[int]) -> list:
    return items if limit is None else items[:limit]
