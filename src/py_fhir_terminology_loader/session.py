# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Staging sessions: timestamped working directories under the configured temp dir.

A session holds the staged CodeSystem, its base file, the concept chunks and
a `session-state.json` marker. The marker is rewritten atomically at the end
of every stage, so a later run can resume from the last completed stage
without guessing from file names.
"""
import os
import re
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console

from .models import SessionState, Stage
from .splitter import CHUNK_FILE_GLOB

console = Console()

SESSION_PREFIX = "fhir-staging-"
SESSION_PATTERN = re.compile(r"^fhir-staging-(\d+)$")
STATE_FILE = "session-state.json"


class StagingSession:
    """One session directory and its marker."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def timestamp(self) -> int:
        match = SESSION_PATTERN.match(self.path.name)
        return int(match.group(1)) if match else 0

    @property
    def state_file(self) -> Path:
        return self.path / STATE_FILE

    def load_state(self) -> SessionState:
        """A session without a readable marker is treated as not started."""
        if not self.state_file.exists():
            return SessionState()
        try:
            return SessionState.model_validate_json(self.state_file.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            console.log(f"[yellow]Ignoring unreadable session marker {self.state_file}: {e}[/yellow]")
            return SessionState()

    def save_state(self, state: SessionState) -> SessionState:
        """Writes the marker via a temp file and os.replace so readers never see a partial file."""
        state = state.model_copy(update={"updated_at": datetime.now(timezone.utc).isoformat()})
        tmp_path = self.path / f".{STATE_FILE}.tmp"
        tmp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self.state_file)
        return state

    def advance(self, stage: Stage, **updates) -> SessionState:
        state = self.load_state().model_copy(update={"stage": stage, **updates})
        return self.save_state(state)

    def staged_document(self, resource_id: str) -> Optional[Path]:
        path = self.path / f"{resource_id}.json"
        return path if path.exists() else None

    def base_file(self, resource_id: str) -> Optional[Path]:
        path = self.path / f"{resource_id}-base.json"
        return path if path.exists() else None

    def chunk_files(self) -> List[Path]:
        return sorted(self.path.glob(CHUNK_FILE_GLOB))

    def files_present(self, state: SessionState) -> bool:
        """True if every file the marker refers to still exists."""
        names = [state.staged_file, state.base_file] + list(state.chunk_files)
        return all((self.path / name).exists() for name in names if name)

    def __repr__(self) -> str:
        return f"StagingSession({self.path})"


class StagingSessionManager:
    def __init__(self, temp_dir: Path, keep_temp: bool = False):
        self.temp_dir = Path(temp_dir)
        self.keep_temp = keep_temp

    def create(self) -> StagingSession:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        timestamp = int(time.time() * 1000)
        path = self.temp_dir / f"{SESSION_PREFIX}{timestamp}"
        # Two sessions created within the same millisecond get distinct names
        while path.exists():
            timestamp += 1
            path = self.temp_dir / f"{SESSION_PREFIX}{timestamp}"
        path.mkdir()
        session = StagingSession(path)
        session.save_state(SessionState())
        console.log(f"Created staging session [bold cyan]{path}[/bold cyan]")
        return session

    def list_sessions(self) -> List[StagingSession]:
        """Existing sessions, newest first."""
        if not self.temp_dir.is_dir():
            return []
        sessions = [
            StagingSession(p) for p in self.temp_dir.iterdir()
            if p.is_dir() and SESSION_PATTERN.match(p.name)
        ]
        return sorted(sessions, key=lambda s: s.timestamp, reverse=True)

    def most_recent(self, resource_id: Optional[str] = None) -> Optional[StagingSession]:
        """
        The newest session, optionally restricted to one whose marker names
        `resource_id`.
        """
        for session in self.list_sessions():
            if resource_id is None or session.load_state().resource_id == resource_id:
                return session
        return None

    def cleanup(self, session: StagingSession):
        if self.keep_temp:
            console.log(f"Keeping temporary files in: {session.path}")
            return
        shutil.rmtree(session.path)
        console.log(f"Removed staging session {session.path.name}")
