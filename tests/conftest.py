# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import csv
import pytest
from pathlib import Path
from typing import Dict, List, Optional

from py_fhir_terminology_loader.config import Settings, get_settings

FHIR_URL = "http://fhir.test/fhir"
RELEASE_DIR_NAME = "SnomedCT_ManagedServiceUS_PRODUCTION_US1000124_20250301T120000Z"
RESOURCE_ID = "sct-US1000124-20250301"

FSN = "900000000000003001"
SYNONYM = "900000000000013009"
IS_A = "116680003"
FINDING_SITE = "363698007"
MODULE = "731000124108"
PRIMITIVE = "900000000000074008"

CONCEPT_HEADER = ["id", "effectiveTime", "active", "moduleId", "definitionStatusId"]
DESCRIPTION_HEADER = [
    "id", "effectiveTime", "active", "moduleId", "conceptId",
    "languageCode", "typeId", "term", "caseSignificanceId",
]
RELATIONSHIP_HEADER = [
    "id", "effectiveTime", "active", "moduleId", "sourceId", "destinationId",
    "relationshipGroup", "typeId", "characteristicTypeId", "modifierId",
]


def concept_row(concept_id: str, active: str = "1") -> List[str]:
    return [concept_id, "20250301", active, MODULE, PRIMITIVE]


def description_row(desc_id: str, concept_id: str, type_id: str, term: str,
                    language: str = "en", active: str = "1") -> List[str]:
    return [desc_id, "20250301", active, MODULE, concept_id, language, type_id, term, "900000000000448009"]


def relationship_row(rel_id: str, source_id: str, destination_id: str, type_id: str,
                     active: str = "1") -> List[str]:
    return [rel_id, "20250301", active, MODULE, source_id, destination_id, "0", type_id,
            "900000000000011006", "900000000000451002"]


def write_rf2(filepath: Path, header: List[str], rows: List[List[str]]):
    """Helper to create a tab-delimited RF2 file with CRLF line endings."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w", encoding="utf-8", newline="") as f:
        f.write("\t".join(header) + "\r\n")
        for row in rows:
            f.write("\t".join(row) + "\r\n")


def build_release(
    root: Path,
    concepts: List[List[str]],
    descriptions: Optional[List[List[str]]] = None,
    relationships: Optional[List[List[str]]] = None,
    text_definitions: Optional[List[List[str]]] = None,
    dir_name: str = RELEASE_DIR_NAME,
    subpath: str = "Full/Terminology",
) -> Path:
    """
    Creates an unpacked RF2 release under `root` and returns the release directory.
    File kinds passed as None are not written at all.
    """
    release_dir = root / dir_name
    terminology = release_dir / subpath
    terminology.mkdir(parents=True, exist_ok=True)
    write_rf2(terminology / "sct2_Concept_Full_US1000124_20250301.txt", CONCEPT_HEADER, concepts)
    if descriptions is not None:
        write_rf2(terminology / "sct2_Description_Full-en_US1000124_20250301.txt", DESCRIPTION_HEADER, descriptions)
    if relationships is not None:
        write_rf2(terminology / "sct2_Relationship_Full_US1000124_20250301.txt", RELATIONSHIP_HEADER, relationships)
    if text_definitions is not None:
        write_rf2(terminology / "sct2_TextDefinition_Full-en_US1000124_20250301.txt", DESCRIPTION_HEADER, text_definitions)
    return release_dir


@pytest.fixture
def release_dir(tmp_path: Path) -> Path:
    """
    A small release: 10001 has an FSN, a synonym, an is-a parent and a finding
    site; 10002 has no descriptions at all; 10003 is the parent concept.
    """
    return build_release(
        tmp_path / "release",
        concepts=[concept_row("10001"), concept_row("10002"), concept_row("10003")],
        descriptions=[
            description_row("1001", "10001", FSN, "Fracture of arm (disorder)"),
            description_row("1002", "10001", SYNONYM, "Arm fracture"),
            description_row("1003", "10003", FSN, "Disorder of upper limb (disorder)"),
        ],
        relationships=[
            relationship_row("2001", "10001", "10003", IS_A),
            relationship_row("2002", "10001", "20001", FINDING_SITE),
        ],
    )


LOINC_HEADER = [
    "LOINC_NUM", "COMPONENT", "PROPERTY", "TIME_ASPCT", "SYSTEM", "SCALE_TYP", "METHOD_TYP",
    "CLASS", "CLASSTYPE", "LONG_COMMON_NAME", "SHORTNAME", "STATUS",
]


def loinc_row(loinc_num: str, long_common_name: str = "", status: str = "ACTIVE", **columns: str) -> Dict[str, str]:
    row = {column: "" for column in LOINC_HEADER}
    row.update(LOINC_NUM=loinc_num, LONG_COMMON_NAME=long_common_name, STATUS=status, **columns)
    return row


def build_loinc_release(root: Path, rows: List[Dict[str, str]], dir_name: str = "Loinc_2.81",
                        subpath: str = "LoincTable") -> Path:
    """Writes a quoted Loinc.csv under `root` and returns the release directory."""
    release_dir = root / dir_name
    table_dir = release_dir / subpath
    table_dir.mkdir(parents=True, exist_ok=True)
    with open(table_dir / "Loinc.csv", "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=LOINC_HEADER, quoting=csv.QUOTE_ALL)
        writer.writeheader()
        writer.writerows(rows)
    return release_dir


def rxnconso_row(rxcui: str, term: str, sab: str = "RXNORM", tty: str = "SCD", ispref: str = "Y") -> List[str]:
    # RXCUI LAT TS LUI STT SUI ISPREF RXAUI SAUI SCUI SDUI SAB TTY CODE STR SRL SUPPRESS CVF
    return [rxcui, "ENG", "", "", "", "", ispref, f"9{rxcui}", "", "", "", sab, tty, rxcui, term, "", "N", "4096"]


def build_rxnorm_release(root: Path, rows: List[List[str]], dir_name: str = "RxNorm_full_09022025",
                         subpath: str = "rrf") -> Path:
    """Writes a pipe-delimited RXNCONSO.RRF (with the trailing pipe) and returns the release directory."""
    release_dir = root / dir_name
    rrf_dir = release_dir / subpath
    rrf_dir.mkdir(parents=True, exist_ok=True)
    with open(rrf_dir / "RXNCONSO.RRF", "w", encoding="utf-8", newline="") as f:
        for row in rows:
            f.write("|".join(row) + "|\n")
    return release_dir


@pytest.fixture
def loinc_release_dir(tmp_path: Path) -> Path:
    """
    2345-7 and 718-7 are complete terms; 99999-9 is deprecated and has no names.
    """
    return build_loinc_release(tmp_path / "release", [
        loinc_row(
            "2345-7", "Glucose [Mass/volume] in Serum or Plasma", SHORTNAME="Glucose SerPl-mCnc",
            COMPONENT="Glucose", PROPERTY="MCnc", TIME_ASPCT="Pt", SYSTEM="Ser/Plas", SCALE_TYP="Qn",
            CLASS="CHEM", CLASSTYPE="1",
        ),
        loinc_row(
            "718-7", "Hemoglobin [Mass/volume] in Blood", COMPONENT="Hemoglobin", PROPERTY="MCnc",
            TIME_ASPCT="Pt", SYSTEM="Bld", SCALE_TYP="Qn", CLASS="HEM/BC", CLASSTYPE="1",
        ),
        loinc_row("99999-9", status="DEPRECATED"),
    ])


@pytest.fixture
def rxnorm_release_dir(tmp_path: Path) -> Path:
    """
    Three concepts; 161 has a second atom from another source that must not win.
    """
    return build_rxnorm_release(tmp_path / "release", [
        rxnconso_row("161", "Acetaminophen", tty="IN"),
        rxnconso_row("161", "ACETAMINOPHEN", sab="MTHSPL", tty="SU", ispref="N"),
        rxnconso_row("198440", "Acetaminophen 500 MG Oral Tablet"),
        rxnconso_row("1191", "Aspirin", tty="IN"),
    ])


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment and from any .env file."""
    return Settings(
        _env_file=None,
        fhir_url=FHIR_URL,
        temp_dir=str(tmp_path / "staging"),
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
