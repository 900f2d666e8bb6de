"""Shared Pydantic models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Strategy = Literal["native", "stream"]


class ExtractionState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    NATIVE_ATTEMPTED = "native_attempted"
    STREAM_ATTEMPTED = "stream_attempted"
    VALIDATED = "validated"
    MOVING = "moving"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    CLEANED = "cleaned"


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    archive: Path
    destination_root: Path


class StagedEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    relative_path: str
    staged_path: Path


class ValidatedEntry(StagedEntry):
    destination_path: Path


class ExtractionResult(BaseModel):
    extracted_paths: list[str] = Field(default_factory=list)
    rejected_paths: list[str] = Field(default_factory=list)
    strategy: Strategy | None = None


class UploadResult(BaseModel):
    """What the upload endpoint hands back; dumps with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName")
    size: int
    extracted_files: list[str] = Field(default_factory=list, alias="extractedFiles")
