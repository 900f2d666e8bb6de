"""Runtime settings, read from ``ARCHIVE_INGEST_*`` environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

ENV_PREFIX = "ARCHIVE_INGEST_"


class IngestSettings(BaseModel):
    archive_extension: str = ".zip"
    native_enabled: bool = True
    unzip_command: str = "unzip"
    powershell_command: str = "powershell.exe"
    stream_concurrency: int = Field(default=8, ge=1)
    chunk_size: int = Field(default=1024 * 1024, ge=1)
    # Reject the whole archive instead of skipping entries that escape the root.
    strict_entries: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> IngestSettings:
        """Build settings from the environment; unknown variables are ignored.

        Values are passed through as strings and coerced by pydantic, so
        ``ARCHIVE_INGEST_NATIVE_ENABLED=false`` works as expected.
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        return cls.model_validate(values)
