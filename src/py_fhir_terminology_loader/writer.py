# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Streams a CodeSystem to disk without holding its concept array in memory.

The document is written as: the header object with its closing brace
replaced by an opened array, then one element per line, then the array and
object terminators. Elements are written one step behind the caller so the
last one can be emitted without a trailing comma. The layout (the array is
the final top-level key, indented by two spaces) is what ChunkSplitter
relies on to recover the header.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, TextIO, Union

from pydantic import BaseModel
from rich.console import Console

from .models import FhirModel

console = Console()

PROGRESS_EVERY = 50000


def _to_json_obj(element: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(element, FhirModel):
        return element.to_fhir()
    if isinstance(element, BaseModel):
        return element.model_dump(exclude_none=True)
    return element


def array_marker(array_key: str) -> str:
    """The exact text that opens the streamed array inside the document."""
    return f"\n  {json.dumps(array_key)}: ["


class StreamingArrayWriter:
    """
    Writes `{<header fields>, "<array_key>": [<elements>]}` to a text sink.

    Contract: open_array once, append_element any number of times,
    close_array once. Calls out of order raise RuntimeError.
    """

    def __init__(self, sink: TextIO):
        self.sink = sink
        self.count = 0
        self._state = "new"
        self._pending: Optional[Dict[str, Any]] = None

    def open_array(self, header: Union[BaseModel, Dict[str, Any]], array_key: str = "concept"):
        if self._state != "new":
            raise RuntimeError("open_array() called twice")
        header_obj = _to_json_obj(header)
        if array_key in header_obj:
            raise ValueError(f"Header must not already contain '{array_key}'")

        body = json.dumps(header_obj, indent=2, ensure_ascii=False)
        if header_obj:
            # Drop the closing "\n}" so the array becomes the last key
            prefix = body[:-2] + ","
        else:
            prefix = "{"
        self.sink.write(prefix + array_marker(array_key))
        self._state = "open"

    def append_element(self, element: Union[BaseModel, Dict[str, Any]]):
        if self._state != "open":
            raise RuntimeError("append_element() requires an open array")
        if self._pending is not None:
            self._flush_pending(trailing_separator=True)
        self._pending = _to_json_obj(element)
        self.count += 1

    def close_array(self):
        if self._state != "open":
            raise RuntimeError("close_array() requires an open array")
        if self._pending is not None:
            self._flush_pending(trailing_separator=False)
        self.sink.write("\n  ]\n}\n")
        self._state = "closed"

    def _flush_pending(self, trailing_separator: bool):
        line = "\n    " + json.dumps(self._pending, ensure_ascii=False)
        if trailing_separator:
            line += ","
        self.sink.write(line)
        self._pending = None


class StagedDocumentWriter:
    """
    Writes the full staged CodeSystem document into a session directory.
    On failure the partial file is left in place for inspection.
    """

    def __init__(self, output_path: Path, verbose: bool = False):
        self.output_path = Path(output_path)
        self.verbose = verbose

    def write(self, header: Union[BaseModel, Dict[str, Any]], concepts: Iterable[Any]) -> int:
        console.log(f"Writing staged CodeSystem to [bold cyan]{self.output_path}[/bold cyan]...")
        with open(self.output_path, "w", encoding="utf-8") as f:
            writer = StreamingArrayWriter(f)
            writer.open_array(header)
            for concept in concepts:
                writer.append_element(concept)
                if self.verbose and writer.count % PROGRESS_EVERY == 0:
                    console.log(f"Staged {writer.count} concepts...")
            writer.close_array()
        console.log(f"[green]Staged {writer.count} concepts to {self.output_path.name}.[/green]")
        return writer.count
