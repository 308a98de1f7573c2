# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import json
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from rich.console import Console

from .config import Settings
from .vocabulary import SNOMED_SYSTEM

console = Console()

FHIR_JSON = "application/fhir+json"
DELTA_ADD_OPERATION = "CodeSystem/$apply-codesystem-delta-add"


class FhirClient:
    """
    The FHIR REST calls used by the importer.

    Every request is sent exactly once: the session adapter has retries
    disabled and nothing here loops on failure. In dry-run mode PUT, POST and
    DELETE are logged instead of sent; reads still go to the server.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.fhir_url.rstrip("/")
        self.session = session or requests.Session()
        adapter = HTTPAdapter(max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update({"Accept": FHIR_JSON})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def _dry_run(self, action: str, body: Optional[Dict[str, Any]] = None) -> bool:
        if not self.settings.dry_run:
            return False
        console.log(f"[yellow][DRY RUN][/yellow] Would {action}")
        if self.settings.verbose and body is not None:
            console.print_json(json.dumps(body))
        return True

    def resource_exists(self, resource_type: str, resource_id: str) -> bool:
        """200 means present and 404 absent. Anything else is logged and treated as absent."""
        try:
            response = self.session.get(
                self._url(f"{resource_type}/{resource_id}"), timeout=self.settings.request_timeout
            )
        except requests.RequestException as e:
            console.log(f"[yellow]Warning: could not check if {resource_type} {resource_id} exists: {e}[/yellow]")
            return False
        if response.status_code == 200:
            return True
        if response.status_code != 404:
            console.log(
                f"[yellow]Warning: could not check if {resource_type} {resource_id} exists: "
                f"HTTP {response.status_code}[/yellow]"
            )
        return False

    def put_resource(self, resource: Dict[str, Any]):
        resource_type = resource.get("resourceType")
        resource_id = resource.get("id")
        if not resource_type or not resource_id:
            raise ValueError("Invalid resource: missing id or resourceType")
        if self._dry_run(f"PUT {resource_type}/{resource_id} to {self.base_url}", resource):
            return
        response = self.session.put(
            self._url(f"{resource_type}/{resource_id}"),
            data=json.dumps(resource, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": FHIR_JSON},
            timeout=self.settings.upload_timeout,
        )
        self._raise_for_status(response, f"PUT {resource_type}/{resource_id}")
        console.log(f"[green]Uploaded {resource_type} {resource_id}: HTTP {response.status_code}[/green]")

    def delete_resource(self, resource_type: str, resource_id: str):
        if self._dry_run(f"DELETE {resource_type}/{resource_id} from {self.base_url}"):
            return
        console.log(f"Deleting {resource_type} {resource_id}...")
        response = self.session.delete(
            self._url(f"{resource_type}/{resource_id}"), timeout=self.settings.delete_timeout
        )
        self._raise_for_status(response, f"DELETE {resource_type}/{resource_id}")
        console.log(f"Deleted {resource_type} {resource_id}: HTTP {response.status_code}")

    def resource_count(self, resource_type: str) -> int:
        """Total from a `_summary=count` search; 0 with a warning if the query fails."""
        try:
            response = self.session.get(
                self._url(resource_type), params={"_summary": "count"}, timeout=self.settings.request_timeout
            )
            response.raise_for_status()
            return int(response.json().get("total", 0))
        except (requests.RequestException, ValueError) as e:
            console.log(f"[yellow]Could not query {resource_type} count: {e}[/yellow]")
            return 0

    def apply_delta_add(self, code_system_id: str, concepts: List[Dict[str, Any]], system: str = SNOMED_SYSTEM):
        """Appends concepts to an existing CodeSystem with $apply-codesystem-delta-add."""
        parameters = {
            "resourceType": "Parameters",
            "parameter": [
                {"name": "system", "valueUri": system},
                {
                    "name": "codeSystem",
                    "resource": {
                        "resourceType": "CodeSystem",
                        "id": code_system_id,
                        "url": system,
                        "concept": concepts,
                    },
                },
            ],
        }
        if self._dry_run(f"POST {DELTA_ADD_OPERATION} with {len(concepts)} concepts for {code_system_id}"):
            return
        response = self.session.post(
            self._url(DELTA_ADD_OPERATION),
            data=json.dumps(parameters, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": FHIR_JSON},
            timeout=self.settings.upload_timeout,
        )
        self._raise_for_status(response, f"POST {DELTA_ADD_OPERATION}")

    def search_by_url(self, resource_type: str, url: str) -> List[Dict[str, Any]]:
        """Resources of `resource_type` whose canonical url is `url`; empty with a warning if the search fails."""
        try:
            response = self.session.get(
                self._url(resource_type), params={"url": url}, timeout=self.settings.request_timeout
            )
            response.raise_for_status()
            bundle = response.json()
        except (requests.RequestException, ValueError) as e:
            console.log(f"[yellow]Could not search {resource_type} by url {url}: {e}[/yellow]")
            return []
        return [entry["resource"] for entry in bundle.get("entry", []) if "resource" in entry]

    def _raise_for_status(self, response: requests.Response, action: str):
        if response.ok:
            return
        console.log(f"[red]{action} failed: HTTP {response.status_code} {response.reason}[/red]")
        if self.settings.verbose and response.text:
            console.log(response.text[:2000])
        response.raise_for_status()
