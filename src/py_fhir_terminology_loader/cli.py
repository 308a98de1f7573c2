# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings, get_settings
from .models import VocabularyKind
from .pipeline import TerminologyImporter
from .session import StagingSessionManager
from .vocabulary import vocabulary_for_code_system

app = typer.Typer(
    name="py-fhir-terminology-loader",
    help="Stage SNOMED CT, LOINC and RxNorm releases into FHIR CodeSystems and load them into a FHIR server."
)
console = Console()


def _load_settings(**overrides) -> Settings:
    """
    Reads settings from the environment and applies the command line flags
    that were actually given.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(Panel(
            f"[bold red]Configuration Error:[/bold red]\n{e}\n\nCheck your .env file and any "
            f"[bold cyan]PYFHIRTERMLOADER_*[/bold cyan] environment variables.",
            title="[bold red]Initialization Failed[/bold red]",
            border_style="red"
        ))
        raise typer.Exit(code=1)
    updates = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=updates)


@app.command(name="import", help="Import a SNOMED CT, LOINC or RxNorm release directory into a FHIR server.")
def import_release(
    source_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        dir_okay=True,
        help="Root of the unpacked release (for SNOMED CT, the directory containing Full/ or Snapshot/)."
    ),
    fhir_url: Optional[str] = typer.Option(None, "--fhir-url", "-u", help="Base URL of the FHIR server."),
    vocabulary: Optional[VocabularyKind] = typer.Option(
        None, "--vocabulary", case_sensitive=False, help="Vocabulary of the release. Detected from the layout when omitted."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Log create, append and delete requests instead of sending them."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed progress."),
    chunk_size: Optional[int] = typer.Option(
        None, "--chunk-size", min=1, help="Concepts per $apply-codesystem-delta-add request."
    ),
    keep_temp: bool = typer.Option(
        False, "--keep-temp", help="Keep the staging directory after a successful import."
    ),
    replace: bool = typer.Option(
        False, "--replace", help="Delete an existing CodeSystem with the same id and upload it again."
    ),
    temp_dir: Optional[Path] = typer.Option(None, "--temp-dir", help="Parent directory for staging sessions."),
    resume: Optional[bool] = typer.Option(
        None, "--resume/--no-resume", help="Resume from the most recent staging session for this release."
    ),
    value_set: bool = typer.Option(
        False, "--value-set", help="Also create a ValueSet containing every code of the CodeSystem."
    ),
):
    """
    Runs the three import stages (preprocess, split, upload) for one release.
    Stages already completed in an earlier session for the same release are skipped.
    """
    settings = _load_settings(
        fhir_url=fhir_url,
        vocabulary=vocabulary,
        # Switches only ever turn a setting on; leaving one off keeps the environment value
        dry_run=dry_run or None,
        verbose=verbose or None,
        chunk_size=chunk_size,
        keep_temp=keep_temp or None,
        replace=replace or None,
        temp_dir=str(temp_dir) if temp_dir else None,
        resume=resume,
        create_value_set=value_set or None,
    )
    mode = " [yellow](dry run)[/yellow]" if settings.dry_run else ""
    console.print(Panel(
        f"[bold cyan]Importing {source_dir} into {settings.fhir_url}[/bold cyan]{mode}",
        border_style="cyan"
    ))

    try:
        importer = TerminologyImporter(settings)
        result = importer.run(source_dir)
    except Exception as e:
        console.print_exception()
        console.print(Panel(f"[bold red]An error occurred during the import: {e}", title="[bold red]Error[/bold red]"))
        raise typer.Exit(code=1)

    lines = [
        f"CodeSystem: [bold cyan]{result.resource_id}[/bold cyan]",
        f"Outcome: {result.outcome}",
    ]
    if result.vocabulary:
        lines.append(f"Vocabulary: {result.vocabulary}")
    if result.concept_count is not None:
        lines.append(f"Concepts: {result.concept_count}")
    if result.chunk_count:
        lines.append(f"Chunks: {result.chunk_count}")
    if result.remote_count is not None:
        lines.append(f"CodeSystems on server: {result.remote_count}")
    if result.remote_value_set_count is not None:
        lines.append(f"ValueSets on server: {result.remote_value_set_count}")
    if result.matching_code_systems:
        lines.append(f"Same-url CodeSystems: {', '.join(result.matching_code_systems)}")
    if result.session_dir:
        lines.append(f"Staging files: {result.session_dir}")
    console.print(Panel("\n".join(lines), title="[bold green]Import Complete[/bold green]", border_style="green"))


@app.command(name="list-sessions", help="List staging sessions and the stage each one reached.")
def list_sessions(
    temp_dir: Optional[Path] = typer.Option(None, "--temp-dir", help="Parent directory for staging sessions."),
):
    settings = _load_settings(temp_dir=str(temp_dir) if temp_dir else None)
    sessions = StagingSessionManager(Path(settings.temp_dir)).list_sessions()
    if not sessions:
        console.print(f"No staging sessions found in {settings.temp_dir}.")
        return

    table = Table(title=f"Staging sessions in {settings.temp_dir}")
    table.add_column("Session")
    table.add_column("Stage")
    table.add_column("Vocabulary")
    table.add_column("CodeSystem")
    table.add_column("Concepts", justify="right")
    table.add_column("Chunks", justify="right")
    for session in sessions:
        state = session.load_state()
        vocabulary = vocabulary_for_code_system({"id": state.resource_id or ""})
        table.add_row(
            session.path.name,
            state.stage.value,
            vocabulary.label if vocabulary else "-",
            state.resource_id or "-",
            str(state.concept_count) if state.concept_count is not None else "-",
            str(len(session.chunk_files())),
        )
    console.print(table)


if __name__ == "__main__":
    app()
