# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import tempfile
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import VocabularyKind


class Settings(BaseSettings):
    """
    Manages the application's configuration settings.
    Utilizes Pydantic's BaseSettings to allow for environment variable overrides.
    A single instance is passed to every component; nothing reads settings globally.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="PYFHIRTERMLOADER_",
        extra="ignore"
    )

    # --- FHIR Server ---
    fhir_url: str = Field("http://localhost:8080/fhir", description="Base URL of the target FHIR server.")
    request_timeout: float = Field(30, description="Timeout in seconds for read-only FHIR requests.")
    upload_timeout: float = Field(300, description="Timeout in seconds for PUT and delta-add requests.")
    delete_timeout: float = Field(60, description="Timeout in seconds for DELETE requests.")

    # --- Source Release ---
    vocabulary: Optional[VocabularyKind] = Field(
        None,
        description="Vocabulary of the release (snomed, loinc or rxnorm). None detects it from the directory layout."
    )

    # --- Run Behavior ---
    dry_run: bool = Field(False, description="Log create/append/delete calls instead of sending them.")
    verbose: bool = Field(False, description="Emit extra progress logging.")
    replace: bool = Field(False, description="Delete an existing CodeSystem with the same id before uploading.")
    keep_temp: bool = Field(False, description="Keep the staging session directory after a successful run.")
    resume: bool = Field(True, description="Resume from the most recent staging session for the same release.")
    create_value_set: bool = Field(
        False,
        description="After a successful upload, also create a ValueSet including every code of the CodeSystem."
    )

    # --- Chunking ---
    chunk_size: int = Field(1000, ge=1, description="Number of concepts per delta-add chunk.")
    direct_upload_threshold: int = Field(
        1000,
        ge=0,
        description="CodeSystems with at most this many concepts are uploaded in a single PUT."
    )
    max_element_bytes: int = Field(
        16 * 1024 * 1024,
        description="Largest single concept, in bytes, the chunk splitter will buffer."
    )
    max_header_bytes: int = Field(
        1024 * 1024,
        description="How far into the staged document the splitter looks for the concept array."
    )

    # --- Concept Assembly ---
    include_inactive_concepts: bool = Field(
        True,
        description="Keep concepts whose latest row is inactive. They carry an 'inactive' property."
    )
    max_parent_properties: Optional[int] = Field(
        None,
        ge=0,
        description="Cap on 'parent' properties per concept. None means no cap."
    )
    max_relationship_properties: Optional[int] = Field(
        None,
        ge=0,
        description="Cap on 'relationship' properties per concept. None means no cap."
    )

    # --- File Paths ---
    temp_dir: str = Field(
        default_factory=tempfile.gettempdir,
        description="Parent directory for fhir-staging-* session directories."
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the Settings object.
    Command line flags are layered on top with `Settings.model_copy(update=...)`.
    """
    return Settings()
