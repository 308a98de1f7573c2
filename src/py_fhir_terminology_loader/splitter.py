# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Splits a staged CodeSystem into a base resource and fixed-size concept chunks.

Header recovery is a structural shortcut, not general JSON parsing: the text
before the `"concept": [` marker written by StreamingArrayWriter is taken as
the header, and `"concept": []` plus a closing brace is appended to make it a
complete document. This only works for documents laid out by that writer,
where the concept array is the last top-level key.

The array itself is read with a pull parser (json.JSONDecoder.raw_decode over
a sliding text buffer), so memory is bounded by one chunk plus one element.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO

from pydantic import BaseModel
from rich.console import Console

from .config import Settings
from .writer import array_marker

console = Console()

CHUNK_FILE_PATTERN = "concepts-chunk-{:04d}.json"
CHUNK_FILE_GLOB = "concepts-chunk-*.json"
READ_SIZE = 64 * 1024
WHITESPACE = " \t\r\n"


class SplitError(Exception):
    """The staged document could not be split; the stage must be rerun."""


class SplitResult(BaseModel):
    base_file: Path
    chunk_files: List[Path]
    concept_count: int
    dropped: int = 0


def base_file_for(staged_file: Path) -> Path:
    return staged_file.with_name(f"{staged_file.stem}-base.json")


def _parse_header(head: str, array_key: str, source: Path) -> Dict[str, Any]:
    """
    Recovers every top-level field except the array from the start of the
    staged document. Raises SplitError if the marker is not in `head` or the
    text before it is not a valid header.
    """
    marker = array_marker(array_key)
    index = head.find(marker)
    if index < 0:
        raise SplitError(f"Could not find the '{array_key}' array in the first {len(head)} characters of {source}")
    try:
        header = json.loads(head[:index] + f"\n  {json.dumps(array_key)}: []\n}}")
    except json.JSONDecodeError as e:
        raise SplitError(f"Could not parse the CodeSystem header of {source}: {e}") from e
    if not isinstance(header, dict):
        raise SplitError(f"The header of {source} is not a JSON object")
    return header


class ArrayElementReader:
    """
    Pulls the elements of a JSON array one at a time from a text stream
    positioned just after the array's opening bracket.

    An element that fails to parse although its whole line is available is
    dropped with a warning; the writer puts one element per line, so the
    next line starts the next element. Running out of input inside the array,
    or a single element larger than `max_element_bytes`, raises SplitError.
    """

    def __init__(self, stream: TextIO, initial: str = "", max_element_bytes: int = 16 * 1024 * 1024,
                 read_size: int = READ_SIZE, source: str = "staged document"):
        self.stream = stream
        self.buffer = initial
        self.pos = 0
        self.eof = False
        self.max_element_bytes = max_element_bytes
        self.read_size = read_size
        self.source = source
        self.dropped = 0
        self._decoder = json.JSONDecoder()

    def _fill(self) -> bool:
        """Reads more input; returns False at end of stream."""
        if self.eof:
            return False
        data = self.stream.read(self.read_size)
        if not data:
            self.eof = True
            return False
        if self.pos:
            self.buffer = self.buffer[self.pos:]
            self.pos = 0
        self.buffer += data
        return True

    def _next_token(self) -> str:
        """Skips whitespace and returns the next character without consuming it."""
        while True:
            while self.pos < len(self.buffer) and self.buffer[self.pos] in WHITESPACE:
                self.pos += 1
            if self.pos < len(self.buffer):
                return self.buffer[self.pos]
            if not self._fill():
                raise SplitError(f"Unexpected end of {self.source} inside the concept array")

    def _decode_element(self) -> Optional[Any]:
        """Decodes one element at the current position. Returns None if it was dropped."""
        self._next_token()
        while True:
            try:
                value, end = self._decoder.raw_decode(self.buffer, self.pos)
                self.pos = end
                return value
            except json.JSONDecodeError as e:
                # The end of the element's own line; e.pos can already be on the next line
                newline = self.buffer.find("\n", self.pos)
                if e.pos < len(self.buffer) and newline >= 0:
                    bad = self.buffer[self.pos:newline].strip()
                    console.log(f"[yellow]Dropping unparseable concept in {self.source}: {e.msg} ({bad[:80]!r})[/yellow]")
                    self.dropped += 1
                    self.pos = newline + 1
                    return None
                if len(self.buffer) - self.pos > self.max_element_bytes:
                    raise SplitError(
                        f"A concept in {self.source} exceeds {self.max_element_bytes} bytes"
                    ) from e
                if not self._fill():
                    raise SplitError(f"Truncated concept at the end of {self.source}: {e.msg}") from e

    def __iter__(self) -> Iterator[Any]:
        if self._next_token() == "]":
            self.pos += 1
            return
        while True:
            value = self._decode_element()
            if value is not None:
                yield value
            token = self._next_token()
            if token == ",":
                self.pos += 1
            elif token == "]":
                self.pos += 1
                return
            elif value is not None:
                raise SplitError(f"Expected ',' or ']' in {self.source}, found {token!r}")
            # After a dropped line the separator was consumed with it


class ChunkSplitter:
    """
    Produces `<id>-base.json` and `concepts-chunk-NNNN.json` files next to the
    staged document.
    """

    def __init__(self, settings: Settings, array_key: str = "concept"):
        self.settings = settings
        self.chunk_size = settings.chunk_size
        self.array_key = array_key

    def split(self, staged_file: Path, output_dir: Optional[Path] = None) -> SplitResult:
        staged_file = Path(staged_file)
        output_dir = Path(output_dir) if output_dir else staged_file.parent
        console.log(f"Splitting {staged_file.name} into chunks of {self.chunk_size} concepts...")

        for stale in output_dir.glob(CHUNK_FILE_GLOB):
            stale.unlink()

        with open(staged_file, "r", encoding="utf-8") as f:
            head = f.read(self.settings.max_header_bytes)
            header = _parse_header(head, self.array_key, staged_file)
            base = dict(header)
            base[self.array_key] = []
            base_path = output_dir / base_file_for(staged_file).name
            _write_json(base_path, base)

            # Continue from just after the array's opening bracket
            remainder = head[head.find(array_marker(self.array_key)) + len(array_marker(self.array_key)):]
            reader = ArrayElementReader(
                f, remainder, self.settings.max_element_bytes, source=staged_file.name
            )

            chunk_files: List[Path] = []
            chunk: List[Dict[str, Any]] = []
            count = 0
            dropped = 0
            for element in reader:
                if not isinstance(element, dict) or "code" not in element:
                    console.log(f"[yellow]Dropping concept without a code in {staged_file.name}: {str(element)[:80]}[/yellow]")
                    dropped += 1
                    continue
                chunk.append(element)
                count += 1
                if len(chunk) == self.chunk_size:
                    chunk_files.append(self._write_chunk(output_dir, len(chunk_files), chunk))
                    chunk = []
            if chunk:
                chunk_files.append(self._write_chunk(output_dir, len(chunk_files), chunk))
            dropped += reader.dropped

        console.log(
            f"[green]Split {count} concepts into {len(chunk_files)} chunks"
            + (f" ({dropped} dropped)" if dropped else "") + ".[/green]"
        )
        return SplitResult(base_file=base_path, chunk_files=chunk_files, concept_count=count, dropped=dropped)

    def _write_chunk(self, output_dir: Path, index: int, concepts: List[Dict[str, Any]]) -> Path:
        path = output_dir / CHUNK_FILE_PATTERN.format(index)
        _write_json(path, concepts)
        if self.settings.verbose:
            console.log(f"Wrote {path.name} ({len(concepts)} concepts)")
        return path


def _write_json(path: Path, obj: Any):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def read_chunk(path: Path) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
