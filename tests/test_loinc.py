# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Tests for reading Loinc.csv and building LOINC concepts.
"""
import pytest
from pathlib import Path

from py_fhir_terminology_loader.loinc import (
    LoincConceptBuilder, LoincCsvReader, build_loinc_header, extract_loinc_version,
)

from conftest import build_loinc_release, loinc_row


def _table(release: Path) -> Path:
    return release / "LoincTable" / "Loinc.csv"


def _build(release: Path, settings):
    builder = LoincConceptBuilder(settings)
    return [c.to_fhir() for c in builder.assemble(LoincCsvReader(_table(release)))], builder


def test_reader_maps_columns_by_name(loinc_release_dir: Path):
    records = list(LoincCsvReader(_table(loinc_release_dir)))

    assert [r.loinc_num for r in records] == ["2345-7", "718-7", "99999-9"]
    assert records[0].time_aspct == "Pt"
    assert records[0].loinc_class == "CHEM"
    assert records[2].status == "DEPRECATED"


def test_reader_tolerates_reordered_columns_and_a_byte_order_mark(tmp_path: Path):
    table = tmp_path / "Loinc.csv"
    table.write_text(
        '\ufeff"SHORTNAME","LOINC_NUM","EXTRA"\n"Hgb Bld-mCnc","718-7","ignored"\n',
        encoding="utf-8",
    )

    records = list(LoincCsvReader(table))

    assert [(r.loinc_num, r.shortname) for r in records] == [("718-7", "Hgb Bld-mCnc")]


def test_rows_without_loinc_num_are_skipped(tmp_path: Path):
    release = build_loinc_release(tmp_path, [loinc_row("", "Orphan"), loinc_row("718-7", "Hemoglobin")])

    reader = LoincCsvReader(_table(release))
    records = list(reader)

    assert [r.loinc_num for r in records] == ["718-7"]
    assert reader.malformed_count == 1


def test_table_without_loinc_num_column_is_rejected(tmp_path: Path):
    table = tmp_path / "Loinc.csv"
    table.write_text('"CODE","NAME"\n"1","x"\n', encoding="utf-8")

    with pytest.raises(ValueError, match="LOINC_NUM"):
        list(LoincCsvReader(table))


def test_concept_display_definition_and_properties(loinc_release_dir: Path, settings):
    concepts, _ = _build(loinc_release_dir, settings)

    glucose = concepts[0]
    assert glucose["code"] == "2345-7"
    assert glucose["display"] == "Glucose [Mass/volume] in Serum or Plasma"
    assert glucose["definition"] == (
        "Glucose [Mass/volume] in Serum or Plasma "
        "(Component: Glucose) (Property: MCnc) (System: Ser/Plas) (Scale: Qn)"
    )
    assert "designation" not in glucose
    assert [(p["code"], p["valueString"]) for p in glucose["property"]] == [
        ("component", "Glucose"), ("property", "MCnc"), ("time", "Pt"), ("system", "Ser/Plas"),
        ("scale", "Qn"), ("class", "CHEM"), ("classtype", "1"),
    ]


def test_term_without_names_gets_placeholder_and_inactive_flag(loinc_release_dir: Path, settings):
    concepts, builder = _build(loinc_release_dir, settings)

    deprecated = concepts[2]
    assert deprecated["display"] == "LOINC Concept 99999-9"
    assert deprecated["definition"] == "LOINC concept 99999-9"
    assert deprecated["property"] == [{"code": "inactive", "valueBoolean": True}]
    assert builder.stats.placeholder_displays == 1


def test_shortname_is_used_when_long_common_name_is_empty(tmp_path: Path, settings):
    release = build_loinc_release(tmp_path, [loinc_row("718-7", SHORTNAME="Hgb Bld-mCnc")])

    concepts, _ = _build(release, settings)

    assert concepts[0]["display"] == "Hgb Bld-mCnc"
    assert concepts[0]["definition"] == "LOINC concept 718-7"


def test_deprecated_terms_can_be_skipped(loinc_release_dir: Path, settings):
    concepts, builder = _build(loinc_release_dir, settings.model_copy(update={"include_inactive_concepts": False}))

    assert [c["code"] for c in concepts] == ["2345-7", "718-7"]
    assert builder.stats.skipped_inactive == 1


def test_duplicate_loinc_numbers_first_row_wins(tmp_path: Path, settings):
    release = build_loinc_release(tmp_path, [loinc_row("718-7", "First"), loinc_row("718-7", "Second")])

    concepts, builder = _build(release, settings)

    assert [c["display"] for c in concepts] == ["First"]
    assert builder.stats.duplicates == 1


@pytest.mark.parametrize("dir_name, expected", [
    ("Loinc_2.81", "http://loinc.org/version/2.81"),
    ("Loinc_2.78_Text", "http://loinc.org/version/2.78"),
    ("loinc-download", "http://loinc.org/version/current"),
])
def test_version_from_release_directory(tmp_path: Path, dir_name: str, expected: str):
    release = build_loinc_release(tmp_path, [loinc_row("718-7", "Hemoglobin")], dir_name=dir_name)

    assert extract_loinc_version(release, _table(release)) == expected


def test_header_fields():
    header = build_loinc_header("http://loinc.org/version/2.81").to_fhir()

    assert header["id"] == "loinc-current"
    assert header["url"] == "http://loinc.org"
    assert header["name"] == header["title"] == "LOINC"
    assert header["publisher"] == "Regenstrief Institute"
    assert header["description"] == "Logical Observation Identifiers Names and Codes"
    assert header["caseSensitive"] is True
    assert header["compositional"] is False
    assert "hierarchyMeaning" not in header
    assert header["content"] == "complete"
    assert {p["code"] for p in header["property"]} == {
        "component", "property", "time", "system", "scale", "method", "class", "classtype", "inactive",
    }
