"""Runtime settings, resolved from the process environment."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

DEVELOPMENT = "development"


class Settings(BaseModel):
    """Settings shared by every request a server handles."""

    env: str = Field("production", description="Runtime mode; 'development' pretty-prints JSON")
    host: str = Field("127.0.0.1", description="Interface the listening socket binds to")
    log_level: str = Field("info", description="Log level handed to uvicorn")
    stream_chunk_size: int = Field(
        64 * 1024, gt=0, description="Bytes read per step when piping a stream payload"
    )

    @property
    def development(self) -> bool:
        return self.env == DEVELOPMENT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``APP_ENV``, ``PIPESERVE_HOST`` and ``PIPESERVE_LOG_LEVEL``."""
        environ = os.environ if environ is None else environ

        values: dict[str, str] = {}
        if "APP_ENV" in environ:
            values["env"] = environ["APP_ENV"]
        if "PIPESERVE_HOST" in environ:
            values["host"] = environ["PIPESERVE_HOST"]
        if "PIPESERVE_LOG_LEVEL" in environ:
            values["log_level"] = environ["PIPESERVE_LOG_LEVEL"].lower()
        return cls(**values)
