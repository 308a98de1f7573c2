# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Delivery of a staged CodeSystem to the FHIR server.

Small CodeSystems are sent in a single PUT. Large ones are sent as a base
resource (every field, empty concept list) followed by one
$apply-codesystem-delta-add call per chunk, strictly in order. If anything
fails after the base resource was written, the base resource is deleted so
the server is not left holding a partially populated CodeSystem.
"""
import json
from pathlib import Path
from typing import Any, Dict, List

import requests
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from .config import Settings
from .fhir_client import FhirClient
from .models import SessionState, ValueSet, ValueSetCompose, ValueSetInclude
from .session import StagingSession
from .splitter import read_chunk

console = Console()

UPLOADED = "uploaded"
SKIPPED = "skipped"
DRY_RUN = "dry_run"


class UploadError(Exception):
    """Delivery failed; any partially created CodeSystem has been rolled back."""


def build_all_codes_value_set(code_system: Dict[str, Any]) -> ValueSet:
    """
    A ValueSet that includes every code of `code_system` by system and version,
    without enumerating them.
    """
    system = code_system["url"]
    return ValueSet(
        id=f"{code_system['id']}-all",
        url=f"{system}?fhir_vs",
        version=code_system["version"],
        name=f"{code_system.get('name', 'CodeSystem')}_ALL",
        title=f"{code_system.get('title', code_system['id'])} - all codes",
        description=f"All codes in {system} version {code_system['version']}",
        compose=ValueSetCompose(include=[ValueSetInclude(system=system, version=code_system["version"])]),
    )


def _load_json(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class UploadStrategy:
    """Shared existence handling and post-upload steps."""

    needs_split = False

    def __init__(self, client: FhirClient, settings: Settings):
        self.client = client
        self.settings = settings

    def should_upload(self, resource_id: str) -> bool:
        """
        Skips an existing CodeSystem unless replace is requested, in which case
        it is deleted first.
        """
        if not self.client.resource_exists("CodeSystem", resource_id):
            return True
        if not self.settings.replace:
            console.log(f"[yellow]CodeSystem {resource_id} already exists on server, skipping upload.[/yellow]")
            return False
        console.log(f"CodeSystem {resource_id} exists and replace is set; deleting it first.")
        self.client.delete_resource("CodeSystem", resource_id)
        return True

    def upload(self, session: StagingSession, state: SessionState) -> str:
        raise NotImplementedError

    def _finish(self, code_system: Dict[str, Any]) -> str:
        if self.settings.create_value_set:
            value_set = build_all_codes_value_set(code_system)
            console.log(f"Creating ValueSet [bold cyan]{value_set.id}[/bold cyan] for all codes...")
            try:
                self.client.put_resource(value_set.to_fhir())
            except requests.RequestException as e:
                raise UploadError(f"CodeSystem {code_system['id']} was uploaded but its ValueSet failed: {e}") from e
        return DRY_RUN if self.settings.dry_run else UPLOADED


class DirectUploadStrategy(UploadStrategy):
    """Uploads the whole staged CodeSystem in one PUT."""

    def upload(self, session: StagingSession, state: SessionState) -> str:
        code_system = _load_json(session.path / state.staged_file)
        resource_id = code_system["id"]
        if not self.should_upload(resource_id):
            return SKIPPED
        console.log(
            f"Uploading CodeSystem {resource_id} with {len(code_system.get('concept', []))} concepts in a single request..."
        )
        self.client.put_resource(code_system)
        return self._finish(code_system)


class StagedUploadStrategy(UploadStrategy):
    """Uploads a base CodeSystem, then appends each chunk in order."""

    needs_split = True

    def upload(self, session: StagingSession, state: SessionState) -> str:
        base = _load_json(session.path / state.base_file)
        resource_id = base["id"]
        system = base["url"]
        chunk_paths = [session.path / name for name in state.chunk_files]
        if not self.should_upload(resource_id):
            return SKIPPED

        console.log(f"Uploading base CodeSystem [bold cyan]{resource_id}[/bold cyan]...")
        self.client.put_resource(base)

        try:
            self._upload_chunks(resource_id, system, chunk_paths)
        except (requests.RequestException, OSError, ValueError) as e:
            console.log(f"[red]Chunk upload failed for CodeSystem {resource_id}: {e}[/red]")
            self._rollback(resource_id)
            raise UploadError(f"Staged upload of CodeSystem {resource_id} failed: {e}") from e

        console.log(f"[green]Uploaded CodeSystem {resource_id} with {len(chunk_paths)} concept chunks.[/green]")
        return self._finish(base)

    def _upload_chunks(self, resource_id: str, system: str, chunk_paths: List[Path]):
        total = len(chunk_paths)
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            "[progress.percentage]{task.percentage:>3.0f}%",
            TimeElapsedColumn(),
            console=console,
            disable=self.settings.dry_run,
        ) as progress:
            task = progress.add_task(f"Uploading {total} chunks...", total=total)
            for index, chunk_path in enumerate(chunk_paths, start=1):
                concepts = read_chunk(chunk_path)
                if self.settings.verbose:
                    console.log(f"Uploading chunk {index}/{total}: {chunk_path.name} ({len(concepts)} concepts)")
                self.client.apply_delta_add(resource_id, concepts, system=system)
                progress.update(task, advance=1)

    def _rollback(self, resource_id: str):
        """Best effort: a failed delete is logged, never raised."""
        console.log(f"Rolling back: deleting partially uploaded CodeSystem {resource_id}...")
        try:
            self.client.delete_resource("CodeSystem", resource_id)
        except requests.RequestException as e:
            console.log(f"[red]Could not delete CodeSystem {resource_id} during rollback: {e}[/red]")


def select_upload_strategy(concept_count: int, client: FhirClient, settings: Settings) -> UploadStrategy:
    """Direct PUT up to the threshold, staged chunks above it."""
    if concept_count <= settings.direct_upload_threshold:
        console.log(f"{concept_count} concepts: using direct upload.")
        return DirectUploadStrategy(client, settings)
    console.log(f"{concept_count} concepts: using staged upload in chunks of {settings.chunk_size}.")
    return StagedUploadStrategy(client, settings)
