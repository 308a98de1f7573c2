# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel

from .config import Settings
from .fhir_client import FhirClient
from .handlers import VocabularyHandler, select_handler
from .models import CodeSystemHeader, ImportResult, SessionState, Stage
from .session import StagingSession, StagingSessionManager
from .splitter import ChunkSplitter
from .strategies import SKIPPED, UPLOADED, select_upload_strategy
from .writer import StagedDocumentWriter

console = Console()


class TerminologyImporter:
    """
    Orchestrates a terminology import as three resumable stages:
    preprocess (source files to a staged CodeSystem), split (base + chunks) and upload.
    """

    def __init__(self, settings: Settings, client: Optional[FhirClient] = None):
        self.settings = settings
        self.client = client or FhirClient(settings)
        self.sessions = StagingSessionManager(Path(settings.temp_dir), keep_temp=settings.keep_temp)

    def run(self, source_dir: Path) -> ImportResult:
        handler = select_handler(Path(source_dir), self.settings)
        header = handler.build_header()
        resource_id = header.id

        if not self.settings.replace and self.client.resource_exists("CodeSystem", resource_id):
            console.log(f"[yellow]CodeSystem {resource_id} already exists on server, skipping import.[/yellow]")
            return ImportResult(resource_id=resource_id, outcome=SKIPPED, vocabulary=handler.vocabulary.kind.value)

        session, state = self._open_session(resource_id)
        try:
            if not state.reached(Stage.PREPROCESSED):
                state = self._preprocess(handler, header, session)
            else:
                console.log(f"Resuming: staged CodeSystem found in {session.path.name}, skipping preprocessing.")

            strategy = select_upload_strategy(state.concept_count or 0, self.client, self.settings)
            if strategy.needs_split:
                if not state.reached(Stage.SPLIT):
                    state = self._split(session, state)
                elif state.chunk_size != self.settings.chunk_size:
                    console.log(
                        f"[yellow]Chunks in {session.path.name} were cut with chunk size {state.chunk_size}; "
                        f"re-splitting with {self.settings.chunk_size}.[/yellow]"
                    )
                    state = self._split(session, state)
                else:
                    console.log(f"Resuming: {len(state.chunk_files)} chunks found in {session.path.name}, skipping split.")

            console.print(Panel(f"[bold cyan]Stage 3: Uploading CodeSystem {resource_id}[/bold cyan]", border_style="cyan"))
            outcome = strategy.upload(session, state)
            if outcome == UPLOADED:
                state = session.advance(Stage.UPLOADED)
        except Exception:
            console.log(f"[red]Import failed; keeping staging session {session.path} for inspection or resume.[/red]")
            raise

        result = ImportResult(
            resource_id=resource_id,
            outcome=outcome,
            vocabulary=handler.vocabulary.kind.value,
            concept_count=state.concept_count,
            chunk_count=len(state.chunk_files),
            session_dir=str(session.path) if self.settings.keep_temp else None,
            remote_count=self.client.resource_count("CodeSystem"),
            remote_value_set_count=self.client.resource_count("ValueSet"),
            matching_code_systems=self._matching_code_systems(handler, header),
        )
        self.sessions.cleanup(session)
        return result

    def _matching_code_systems(self, handler: VocabularyHandler, header: CodeSystemHeader) -> List[str]:
        matches = self.client.search_by_url("CodeSystem", header.url)
        ids = [cs.get("id", "?") for cs in matches]
        if ids:
            console.log(f"{handler.vocabulary.label} CodeSystems on server: {', '.join(ids)}")
        return ids

    def _open_session(self, resource_id: str):
        if self.settings.resume:
            session = self.sessions.most_recent(resource_id)
            if session is not None:
                state = session.load_state()
                if state.stage != Stage.UPLOADED and session.files_present(state):
                    console.log(f"Resuming staging session {session.path.name} at stage '{state.stage.value}'.")
                    return session, state
                console.log(f"[yellow]Session {session.path.name} cannot be resumed; starting a new one.[/yellow]")
        session = self.sessions.create()
        state = session.advance(Stage.NOT_STARTED, resource_id=resource_id)
        return session, state

    def _preprocess(self, handler: VocabularyHandler, header: CodeSystemHeader, session: StagingSession) -> SessionState:
        console.print(Panel(
            f"[bold cyan]Stage 1: Preprocessing {handler.vocabulary.label} release[/bold cyan]", border_style="cyan"
        ))
        concepts = handler.concepts()
        staged_path = session.path / f"{header.id}.json"
        count = StagedDocumentWriter(staged_path, verbose=self.settings.verbose).write(header, concepts)
        return session.advance(
            Stage.PREPROCESSED,
            resource_id=header.id,
            concept_count=count,
            staged_file=staged_path.name,
            base_file=None,
            chunk_files=[],
            chunk_size=None,
        )

    def _split(self, session: StagingSession, state: SessionState) -> SessionState:
        console.print(Panel("[bold cyan]Stage 2: Splitting staged CodeSystem[/bold cyan]", border_style="cyan"))
        result = ChunkSplitter(self.settings).split(session.path / state.staged_file)
        return session.advance(
            Stage.SPLIT,
            concept_count=result.concept_count,
            base_file=result.base_file.name,
            chunk_files=[p.name for p in result.chunk_files],
            chunk_size=self.settings.chunk_size,
        )
