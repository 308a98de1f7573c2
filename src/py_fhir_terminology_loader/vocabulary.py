# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Identifiers and display mappings for the supported vocabularies.

NOTE: The SNOMED CT relationship type map covers the attributes seen most
often in clinical findings. Anything else is rendered with its raw concept
id, which is still a valid reference into the CodeSystem.
"""
from typing import Any, Dict, Optional

from .models import VocabularyInfo, VocabularyKind

SNOMED_SYSTEM = "http://snomed.info/sct"
SNOMED_NAME = "SNOMED_CT"
SNOMED_PUBLISHER = "SNOMED International"

LOINC_SYSTEM = "http://loinc.org"
RXNORM_SYSTEM = "http://www.nlm.nih.gov/research/umls/rxnorm"

SNOMED = VocabularyInfo(
    kind=VocabularyKind.SNOMED,
    label="SNOMED CT",
    system=SNOMED_SYSTEM,
    name=SNOMED_NAME,
    publisher=SNOMED_PUBLISHER,
    id_prefix="sct-",
)
LOINC = VocabularyInfo(
    kind=VocabularyKind.LOINC,
    label="LOINC",
    system=LOINC_SYSTEM,
    name="LOINC",
    publisher="Regenstrief Institute",
    description="Logical Observation Identifiers Names and Codes",
    id_prefix="loinc-",
)
RXNORM = VocabularyInfo(
    kind=VocabularyKind.RXNORM,
    label="RxNorm",
    system=RXNORM_SYSTEM,
    name="RxNorm",
    publisher="National Library of Medicine",
    description="RxNorm - Normalized Names for Clinical Drugs",
    id_prefix="rxnorm-",
)

VOCABULARIES: Dict[VocabularyKind, VocabularyInfo] = {v.kind: v for v in (SNOMED, LOINC, RXNORM)}

# LOINC and RxNorm releases are loaded under one fixed id each
LOINC_RESOURCE_ID = "loinc-current"
RXNORM_RESOURCE_ID = "rxnorm-current"
# Description types (RF2 typeId)
FSN_TYPE_ID = "900000000000003001"
SYNONYM_TYPE_ID = "900000000000013009"
DEFINITION_TYPE_ID = "900000000000550004"

DESCRIPTION_TYPE_DISPLAY = {
    FSN_TYPE_ID: "Fully specified name",
    SYNONYM_TYPE_ID: "Synonym",
    DEFINITION_TYPE_ID: "Definition",
}

# Designation use-context extension
DESIGNATION_USE_CONTEXT_URL = "http://snomed.info/fhir/StructureDefinition/designation-use-context"
US_ENGLISH_LANGUAGE_REFSET = "900000000000509007"
PREFERRED_ACCEPTABILITY = "900000000000548007"
PREFERRED_ACCEPTABILITY_DISPLAY = "PREFERRED"

# Relationship types (RF2 typeId)
IS_A_TYPE_ID = "116680003"

RELATIONSHIP_TYPE_DISPLAY = {
    IS_A_TYPE_ID: "IS_A",
    "363698007": "Finding site",
    "272741003": "Laterality",
    "408729009": "Finding context",
    "408731000": "Temporal context",
    "408732007": "Subject relationship context",
    "408730004": "Subject relationship context",
}

# Namespace country codes recognised in release directory names
EDITION_BY_COUNTRY = {
    "US": "United States Edition",
    "INT": "International Edition",
    "AU": "Australian Edition",
    "CA": "Canadian Edition",
    "NL": "Netherlands Edition",
    "SE": "Swedish Edition",
    "DK": "Danish Edition",
    "BE": "Belgian Edition",
    "ES": "Spanish Edition",
    "CH": "Swiss Edition",
    "IE": "Irish Edition",
    "NZ": "New Zealand Edition",
    "PL": "Polish Edition",
    "PT": "Portuguese Edition",
    "BR": "Brazilian Edition",
    "MX": "Mexican Edition",
    "AR": "Argentine Edition",
    "CL": "Chilean Edition",
    "CO": "Colombian Edition",
    "PE": "Peruvian Edition",
    "UY": "Uruguayan Edition",
    "VE": "Venezuelan Edition",
    "EC": "Ecuadorian Edition",
    "BO": "Bolivian Edition",
    "PY": "Paraguayan Edition",
    "GY": "Guyanese Edition",
    "SR": "Surinamese Edition",
    "TT": "Trinidad and Tobago Edition",
    "JM": "Jamaican Edition",
    "BB": "Barbadian Edition",
    "BS": "Bahamian Edition",
    "BZ": "Belizean Edition",
    "CR": "Costa Rican Edition",
    "CU": "Cuban Edition",
    "DO": "Dominican Edition",
    "GT": "Guatemalan Edition",
    "HN": "Honduran Edition",
    "NI": "Nicaraguan Edition",
    "PA": "Panamanian Edition",
    "SV": "Salvadoran Edition",
    "HT": "Haitian Edition",
    "DM": "Dominican Edition",
    "AG": "Antiguan Edition",
    "KN": "Saint Kitts and Nevis Edition",
    "LC": "Saint Lucian Edition",
    "VC": "Saint Vincent and the Grenadines Edition",
    "GD": "Grenadian Edition",
}


def get_relationship_type_display(type_id: str) -> str:
    """Maps an RF2 relationship typeId to a readable name, or returns the raw id."""
    return RELATIONSHIP_TYPE_DISPLAY.get(type_id, type_id)


def get_description_type_display(type_id: str) -> str:
    return DESCRIPTION_TYPE_DISPLAY.get(type_id, type_id)


def get_edition_name(namespace: str) -> str:
    """
    Maps a namespace such as 'US1000124' or 'INT0000000' to its edition name.
    Unknown country codes fall back to '<CC> Edition'.
    """
    if namespace.startswith("INT"):
        return EDITION_BY_COUNTRY["INT"]
    country_code = namespace[:2]
    return EDITION_BY_COUNTRY.get(country_code, f"{country_code} Edition")


# LOINC part columns carried as valueString properties, in output order: (Loinc.csv column, property code, description)
LOINC_PROPERTY_COLUMNS = (
    ("COMPONENT", "component", "First major axis: the analyte or component measured"),
    ("PROPERTY", "property", "Second major axis: the kind of property observed"),
    ("TIME_ASPCT", "time", "Third major axis: the timing of the measurement"),
    ("SYSTEM", "system", "Fourth major axis: the specimen or system observed"),
    ("SCALE_TYP", "scale", "Fifth major axis: the scale of the measurement"),
    ("METHOD_TYP", "method", "Sixth major axis: the method of the measurement"),
    ("CLASS", "class", "Classification of the term"),
    ("CLASSTYPE", "classtype", "1 laboratory, 2 clinical, 3 claims attachment, 4 surveys"),
)

# RxNorm atom attributes carried as valueString properties: (property code, description)
RXNORM_PROPERTIES = (
    ("tty", "Term type"),
    ("sab", "Source abbreviation"),
    ("ispref", "Atom status, preferred (Y) or not (N)"),
)


def get_vocabulary(kind: Any) -> VocabularyInfo:
    """Looks up a vocabulary by kind or by its string value ('snomed', 'loinc', 'rxnorm')."""
    try:
        return VOCABULARIES[VocabularyKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown vocabulary '{kind}'; expected one of {', '.join(k.value for k in VocabularyKind)}") from None


def vocabulary_for_code_system(code_system: Dict[str, Any]) -> Optional[VocabularyInfo]:
    """Identifies the vocabulary of a CodeSystem resource by its id prefix or its url."""
    for vocabulary in VOCABULARIES.values():
        if str(code_system.get("id", "")).startswith(vocabulary.id_prefix) or code_system.get("url") == vocabulary.system:
            return vocabulary
    return None


def placeholder_display(vocabulary: VocabularyInfo, code: str) -> str:
    return f"{vocabulary.label} Concept {code}"


def placeholder_definition(vocabulary: VocabularyInfo, code: str) -> str:
    return f"{vocabulary.label} concept {code}"
