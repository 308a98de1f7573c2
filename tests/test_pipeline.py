# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
End-to-end tests of the three-stage import against a mocked FHIR server.
"""
import json
from unittest.mock import MagicMock
import pytest
from pathlib import Path

from py_fhir_terminology_loader.fhir_client import FhirClient
from py_fhir_terminology_loader.models import Stage
from py_fhir_terminology_loader.pipeline import TerminologyImporter
from py_fhir_terminology_loader.session import StagingSessionManager
from py_fhir_terminology_loader.strategies import UploadError

from conftest import FHIR_URL, RESOURCE_ID

CODE_SYSTEM_URL = f"{FHIR_URL}/CodeSystem/{RESOURCE_ID}"
SEARCH_URL = f"{FHIR_URL}/CodeSystem?url=http://snomed.info/sct"
DELTA_ADD_URL = f"{FHIR_URL}/CodeSystem/$apply-codesystem-delta-add"
MUTATING = {"PUT", "POST", "DELETE"}


def accepting_server(requests_mock, resource_id: str, system: str):
    """An empty server that accepts every write for `resource_id`."""
    code_system_url = f"{FHIR_URL}/CodeSystem/{resource_id}"
    requests_mock.get(code_system_url, status_code=404)
    requests_mock.get(f"{FHIR_URL}/CodeSystem?_summary=count", json={"resourceType": "Bundle", "total": 1})
    requests_mock.get(f"{FHIR_URL}/ValueSet?_summary=count", json={"resourceType": "Bundle", "total": 0})
    requests_mock.get(f"{FHIR_URL}/CodeSystem?url={system}", json={"resourceType": "Bundle", "total": 0})
    requests_mock.put(code_system_url, status_code=201)
    requests_mock.post(DELTA_ADD_URL, json={"resourceType": "Parameters"})
    requests_mock.delete(code_system_url, status_code=200)
    return requests_mock


@pytest.fixture
def fhir_server(requests_mock):
    return accepting_server(requests_mock, RESOURCE_ID, "http://snomed.info/sct")


@pytest.fixture
def staged_settings(settings):
    """Forces the staged path for the three-concept release."""
    return settings.model_copy(update={"direct_upload_threshold": 1, "chunk_size": 2})


def _writes(requests_mock):
    return [(r.method, r.url) for r in requests_mock.request_history if r.method in MUTATING]


def _sessions(settings):
    return StagingSessionManager(Path(settings.temp_dir)).list_sessions()


def test_direct_import(release_dir: Path, settings, fhir_server):
    result = TerminologyImporter(settings).run(release_dir)

    assert result.outcome == "uploaded"
    assert result.resource_id == RESOURCE_ID
    assert result.concept_count == 3
    assert result.chunk_count == 0
    assert result.remote_count == 1
    assert result.vocabulary == "snomed"
    assert _writes(fhir_server) == [("PUT", CODE_SYSTEM_URL)]

    put = next(r for r in fhir_server.request_history if r.method == "PUT")
    code_system = put.json()
    assert code_system["version"] == "http://snomed.info/sct/US1000124/version/20250301"
    assert [c["code"] for c in code_system["concept"]] == ["10001", "10002", "10003"]
    assert code_system["concept"][1]["display"] == "SNOMED CT Concept 10002"
    assert _sessions(settings) == []


def test_staged_import(release_dir: Path, staged_settings, fhir_server):
    result = TerminologyImporter(staged_settings).run(release_dir)

    assert result.outcome == "uploaded"
    assert result.chunk_count == 2
    assert _writes(fhir_server) == [
        ("PUT", CODE_SYSTEM_URL), ("POST", DELTA_ADD_URL), ("POST", DELTA_ADD_URL),
    ]
    posts = [r.json() for r in fhir_server.request_history if r.method == "POST"]
    codes = [[c["code"] for c in p["parameter"][1]["resource"]["concept"]] for p in posts]
    assert codes == [["10001", "10002"], ["10003"]]


def test_second_run_is_a_no_op(release_dir: Path, settings, fhir_server):
    """Once the CodeSystem exists, a rerun sends no writes and stages nothing."""
    TerminologyImporter(settings).run(release_dir)
    fhir_server.get(CODE_SYSTEM_URL, json={"resourceType": "CodeSystem", "id": RESOURCE_ID})
    writes_before = len(_writes(fhir_server))

    result = TerminologyImporter(settings).run(release_dir)

    assert result.outcome == "skipped"
    assert len(_writes(fhir_server)) == writes_before
    assert _sessions(settings) == []


def test_replace_deletes_and_uploads_again(release_dir: Path, settings, fhir_server):
    fhir_server.get(CODE_SYSTEM_URL, json={"resourceType": "CodeSystem", "id": RESOURCE_ID})

    result = TerminologyImporter(settings.model_copy(update={"replace": True})).run(release_dir)

    assert result.outcome == "uploaded"
    assert [m for m, _ in _writes(fhir_server)] == ["DELETE", "PUT"]


def test_failed_upload_keeps_session_and_resumes(release_dir: Path, staged_settings, fhir_server):
    fhir_server.post(DELTA_ADD_URL, status_code=503)

    with pytest.raises(UploadError):
        TerminologyImporter(staged_settings).run(release_dir)

    sessions = _sessions(staged_settings)
    assert len(sessions) == 1
    failed = sessions[0]
    assert failed.load_state().stage == Stage.SPLIT
    assert ("DELETE", CODE_SYSTEM_URL) in _writes(fhir_server)

    fhir_server.post(DELTA_ADD_URL, json={"resourceType": "Parameters"})
    staged_mtime = (failed.path / f"{RESOURCE_ID}.json").stat().st_mtime_ns
    result = TerminologyImporter(staged_settings.model_copy(update={"keep_temp": True})).run(release_dir)

    assert result.outcome == "uploaded"
    assert result.session_dir == str(failed.path)
    assert (failed.path / f"{RESOURCE_ID}.json").stat().st_mtime_ns == staged_mtime
    assert failed.load_state().stage == Stage.UPLOADED
    assert len(_sessions(staged_settings)) == 1


def test_no_resume_starts_a_new_session(release_dir: Path, staged_settings, fhir_server):
    fhir_server.post(DELTA_ADD_URL, status_code=503)
    with pytest.raises(UploadError):
        TerminologyImporter(staged_settings).run(release_dir)

    fhir_server.post(DELTA_ADD_URL, json={"resourceType": "Parameters"})
    settings = staged_settings.model_copy(update={"resume": False, "keep_temp": True})
    result = TerminologyImporter(settings).run(release_dir)

    assert result.outcome == "uploaded"
    assert len(_sessions(settings)) == 2


def test_keep_temp_leaves_staging_files(release_dir: Path, staged_settings, fhir_server):
    result = TerminologyImporter(staged_settings.model_copy(update={"keep_temp": True})).run(release_dir)

    session_dir = Path(result.session_dir)
    state = json.loads((session_dir / "session-state.json").read_text())
    assert state["stage"] == "uploaded"
    assert state["chunk_files"] == ["concepts-chunk-0000.json", "concepts-chunk-0001.json"]
    assert (session_dir / f"{RESOURCE_ID}-base.json").exists()


def test_dry_run_sends_no_writes(release_dir: Path, staged_settings, fhir_server):
    result = TerminologyImporter(staged_settings.model_copy(update={"dry_run": True})).run(release_dir)

    assert result.outcome == "dry_run"
    assert _writes(fhir_server) == []


def test_missing_concept_file_fails_before_any_request(tmp_path: Path, settings, requests_mock):
    release = tmp_path / "SnomedCT_US1000124_20250301"
    (release / "Full" / "Terminology").mkdir(parents=True)

    with pytest.raises(FileNotFoundError):
        TerminologyImporter(settings).run(release)

    assert requests_mock.call_count == 0
    assert _sessions(settings) == []


def test_injected_client_short_circuits_before_staging(release_dir: Path, settings):
    client = MagicMock(spec=FhirClient)
    client.resource_exists.return_value = True

    result = TerminologyImporter(settings, client=client).run(release_dir)

    assert result.outcome == "skipped"
    client.resource_exists.assert_called_once_with("CodeSystem", RESOURCE_ID)
    client.put_resource.assert_not_called()
    assert _sessions(settings) == []


def test_summary_searches_code_systems_by_url(release_dir: Path, settings, fhir_server):
    fhir_server.get(f"{FHIR_URL}/ValueSet?_summary=count", json={"resourceType": "Bundle", "total": 4})
    fhir_server.get(SEARCH_URL, json={"resourceType": "Bundle", "entry": [
        {"resource": {"resourceType": "CodeSystem", "id": "sct-900000000000207008-20250101"}},
        {"resource": {"resourceType": "CodeSystem", "id": RESOURCE_ID}},
    ]})

    result = TerminologyImporter(settings).run(release_dir)

    assert result.remote_value_set_count == 4
    assert result.matching_code_systems == ["sct-900000000000207008-20250101", RESOURCE_ID]
    searches = [r for r in fhir_server.request_history if r.method == "GET" and "url" in r.qs]
    assert len(searches) == 1
    assert searches[0].qs["url"] == ["http://snomed.info/sct"]


def test_failed_summary_search_does_not_fail_the_import(release_dir: Path, settings, fhir_server):
    fhir_server.get(SEARCH_URL, status_code=500)

    result = TerminologyImporter(settings).run(release_dir)

    assert result.outcome == "uploaded"
    assert result.matching_code_systems == []


def test_resume_resplits_when_chunk_size_changes(release_dir: Path, staged_settings, fhir_server):
    fhir_server.post(DELTA_ADD_URL, status_code=503)
    with pytest.raises(UploadError):
        TerminologyImporter(staged_settings).run(release_dir)
    failed = _sessions(staged_settings)[0]
    assert failed.load_state().chunk_size == 2
    assert len(failed.load_state().chunk_files) == 2

    fhir_server.post(DELTA_ADD_URL, json={"resourceType": "Parameters"})
    before = len(fhir_server.request_history)
    resized = staged_settings.model_copy(update={"chunk_size": 1, "keep_temp": True})
    result = TerminologyImporter(resized).run(release_dir)

    assert result.outcome == "uploaded"
    assert result.session_dir == str(failed.path)
    assert result.chunk_count == 3
    state = failed.load_state()
    assert state.chunk_size == 1
    assert state.chunk_files == [
        "concepts-chunk-0000.json", "concepts-chunk-0001.json", "concepts-chunk-0002.json",
    ]
    posts = [r.json() for r in fhir_server.request_history[before:] if r.method == "POST"]
    assert [[c["code"] for c in p["parameter"][1]["resource"]["concept"]] for p in posts] == [
        ["10001"], ["10002"], ["10003"],
    ]


def test_loinc_import(loinc_release_dir: Path, settings, requests_mock):
    accepting_server(requests_mock, "loinc-current", "http://loinc.org")

    result = TerminologyImporter(settings).run(loinc_release_dir)

    assert result.outcome == "uploaded"
    assert result.resource_id == "loinc-current"
    assert result.vocabulary == "loinc"
    put = next(r for r in requests_mock.request_history if r.method == "PUT")
    assert put.url == f"{FHIR_URL}/CodeSystem/loinc-current"
    code_system = put.json()
    assert code_system["url"] == "http://loinc.org"
    assert code_system["version"] == "http://loinc.org/version/2.81"
    assert [c["code"] for c in code_system["concept"]] == ["2345-7", "718-7", "99999-9"]
    assert "designation" not in code_system["concept"][0]


def test_rxnorm_staged_import(rxnorm_release_dir: Path, staged_settings, requests_mock):
    system = "http://www.nlm.nih.gov/research/umls/rxnorm"
    accepting_server(requests_mock, "rxnorm-current", system)

    result = TerminologyImporter(staged_settings).run(rxnorm_release_dir)

    assert result.outcome == "uploaded"
    assert result.vocabulary == "rxnorm"
    assert result.chunk_count == 2
    assert _writes(requests_mock) == [
        ("PUT", f"{FHIR_URL}/CodeSystem/rxnorm-current"), ("POST", DELTA_ADD_URL), ("POST", DELTA_ADD_URL),
    ]
    posts = [r.json() for r in requests_mock.request_history if r.method == "POST"]
    assert posts[0]["parameter"][0] == {"name": "system", "valueUri": system}
    codes = [[c["code"] for c in p["parameter"][1]["resource"]["concept"]] for p in posts]
    assert codes == [["161", "198440"], ["1191"]]
