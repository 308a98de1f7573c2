# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# --- RF2 input records ---

class ConceptRecord(BaseModel):
    """
    A single row of sct2_Concept_*.txt.
    Folded into exactly one FHIR concept; the first row for an id wins.
    """
    id: str
    effective_time: str
    active: bool
    module_id: str
    definition_status_id: str


class LabelRecord(BaseModel):
    """
    A single row of sct2_Description_*.txt or sct2_TextDefinition_*.txt.
    The type_id separates fully specified names from synonyms.
    """
    id: str
    effective_time: str
    active: bool
    module_id: str
    concept_id: str
    language_code: str
    type_id: str
    term: str
    case_significance_id: str


class RelationshipRecord(BaseModel):
    """
    A single row of sct2_Relationship_*.txt.
    """
    id: str
    effective_time: str
    active: bool
    module_id: str
    source_id: str
    destination_id: str
    relationship_group: str
    type_id: str
    characteristic_type_id: str
    modifier_id: str


# --- LOINC and RxNorm input records ---

class LoincRecord(BaseModel):
    """
    A single row of Loinc.csv. Only the columns that end up in the CodeSystem
    are kept; empty cells are empty strings.
    """
    loinc_num: str
    long_common_name: str = ""
    shortname: str = ""
    component: str = ""
    property: str = ""
    time_aspct: str = ""
    system: str = ""
    scale_typ: str = ""
    method_typ: str = ""
    loinc_class: str = ""
    classtype: str = ""
    status: str = ""


class RxNormRecord(BaseModel):
    """A single atom row of RXNCONSO.RRF."""
    rxcui: str
    lat: str
    sab: str
    tty: str
    code: str
    term: str
    ispref: str
    suppress: str


class VocabularyKind(str, Enum):
    SNOMED = "snomed"
    LOINC = "loinc"
    RXNORM = "rxnorm"


class VocabularyInfo(BaseModel):
    """Identity of a supported vocabulary, shared by every CodeSystem built for it."""
    kind: VocabularyKind
    label: str  # used in titles and placeholder displays
    system: str
    name: str
    publisher: str
    description: Optional[str] = None
    id_prefix: str


# --- FHIR output resources ---

class FhirModel(BaseModel):
    """Base for FHIR elements: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_fhir(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Coding(FhirModel):
    system: str
    code: str
    display: Optional[str] = None


class Extension(FhirModel):
    url: str
    value_coding: Optional[Coding] = None
    extension: Optional[List["Extension"]] = None


class Designation(FhirModel):
    extension: Optional[List[Extension]] = None
    language: str
    use: Coding
    value: str


class ConceptProperty(FhirModel):
    code: str
    value_code: Optional[str] = None
    value_string: Optional[str] = None
    value_boolean: Optional[bool] = None


class FhirConcept(FhirModel):
    """
    One entry of CodeSystem.concept.
    SNOMED CT concepts always carry at least one designation (see
    ConceptAssembler); LOINC and RxNorm concepts carry none.
    """
    code: str
    display: str
    definition: Optional[str] = None
    designation: Optional[List[Designation]] = None
    property: List[ConceptProperty] = []


class PropertyDefinition(FhirModel):
    code: str
    uri: Optional[str] = None
    description: Optional[str] = None
    type: str


class CodeSystemHeader(FhirModel):
    """
    Every top-level CodeSystem field except the concept array, which is
    streamed separately by the staged document writer.
    """
    resource_type: str = "CodeSystem"
    id: str
    url: str
    version: str
    name: str
    title: str
    status: str = "active"
    date: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    case_sensitive: Optional[bool] = None
    hierarchy_meaning: Optional[str] = None
    compositional: Optional[bool] = None
    content: str = "complete"
    property: List[PropertyDefinition] = []


class ValueSetInclude(FhirModel):
    system: str
    version: Optional[str] = None


class ValueSetCompose(FhirModel):
    include: List[ValueSetInclude]


class ValueSet(FhirModel):
    resource_type: str = "ValueSet"
    id: str
    url: str
    version: str
    name: str
    title: str
    status: str = "active"
    description: Optional[str] = None
    compose: ValueSetCompose


# --- Release and run bookkeeping ---

class ReleaseMetadata(BaseModel):
    """
    Identity of one RF2 release, derived from its directory name or file headers.
    """
    namespace: str
    release_date: str  # yyyymmdd
    edition: str

    @property
    def version_uri(self) -> str:
        return f"http://snomed.info/sct/{self.namespace}/version/{self.release_date}"

    @property
    def resource_id(self) -> str:
        return f"sct-{self.namespace}-{self.release_date}"

    @property
    def iso_date(self) -> str:
        d = self.release_date
        return f"{d[0:4]}-{d[4:6]}-{d[6:8]}"


class Stage(str, Enum):
    NOT_STARTED = "not_started"
    PREPROCESSED = "preprocessed"
    SPLIT = "split"
    UPLOADED = "uploaded"

    @property
    def rank(self) -> int:
        return list(Stage).index(self)


class SessionState(BaseModel):
    """
    Contents of session-state.json, written atomically at the end of each stage.
    File names are relative to the session directory.
    """
    stage: Stage = Stage.NOT_STARTED
    resource_id: Optional[str] = None
    concept_count: Optional[int] = None
    staged_file: Optional[str] = None
    base_file: Optional[str] = None
    chunk_files: List[str] = Field(default_factory=list)
    chunk_size: Optional[int] = None  # the size chunk_files were cut with
    updated_at: Optional[str] = None

    def reached(self, stage: Stage) -> bool:
        return self.stage.rank >= stage.rank


class ImportResult(BaseModel):
    resource_id: str
    outcome: str  # 'uploaded', 'skipped' or 'dry_run'
    vocabulary: Optional[str] = None
    concept_count: Optional[int] = None
    chunk_count: int = 0
    session_dir: Optional[str] = None
    remote_count: Optional[int] = None
    remote_value_set_count: Optional[int] = None
    # ids of the CodeSystems on the server that share this vocabulary's url
    matching_code_systems: List[str] = Field(default_factory=list)
