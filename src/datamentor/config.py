"""Configuration loader.

The service reads its configuration from environment variables so the same
package can run under uvicorn locally, in a container, or inside tests with
a handful of overrides.  Reasonable defaults are provided so that local
development works out of the box.

Environment variables:

``DATAMENTOR_API_KEY``
    Shared secret expected in the ``x-api-key`` header.  When empty the
    authentication check is skipped.

``DATAMENTOR_SEED_PATH``
    Path to a SQL script used to seed (and re-seed on reset) the in-memory
    database.  Defaults to the ``seed.sql`` bundled with the package.

``DATAMENTOR_WORKER_PYTHON``
    Interpreter used to launch the pandas worker subprocess.  Defaults to
    the interpreter running the service.

``DATAMENTOR_WORKER_PRELOAD``
    Comma-separated list of modules the worker imports while booting.
    Defaults to ``pandas``.

``DATAMENTOR_MAX_EXECUTION_SECONDS``
    Deadline for a single interpreter submission.  Default is 30.

``DATAMENTOR_BOOT_TIMEOUT_SECONDS``
    How long starting a Pandas session waits for the worker to boot before
    answering anyway.  Default is 120.

``DATAMENTOR_MAX_PROMPT_ROWS``
    Maximum number of result rows embedded in a prompt for the mentor.
    Default is 20.

``DATAMENTOR_LOG_LEVEL``
    Level of the ``datamentor`` logger.  Default is ``INFO``.

``DATAMENTOR_MENTOR_API_KEY`` / ``OPENAI_API_KEY``
    Key for the OpenAI-compatible chat endpoint used by the mentor.  When
    neither is set the service runs with an offline mentor that only
    acknowledges executions.

``DATAMENTOR_MENTOR_BASE_URL`` / ``OPENAI_BASE_URL``
    Base URL of the chat endpoint.  Defaults to ``https://api.openai.com/v1``.

``DATAMENTOR_MENTOR_MODEL``
    Chat model name.  Defaults to ``gpt-4o-mini``.

``DATAMENTOR_MENTOR_TIMEOUT_SECONDS``
    Request timeout for one mentor turn.  Default is 60.

``PORT``
    The port on which the API server listens.  Defaults to 8080.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import List


def _parse_list(value: str | None, default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    """Centralised configuration object."""

    api_key: str
    seed_path: str | None
    worker_python: str
    worker_preload: List[str]
    max_execution_seconds: int
    boot_timeout_seconds: int
    max_prompt_rows: int
    log_level: str
    port: int
    mentor_api_key: str = ""
    mentor_base_url: str = "https://api.openai.com/v1"
    mentor_model: str = "gpt-4o-mini"
    mentor_timeout_seconds: int = 60

    @classmethod
    def load(cls) -> "Config":
        # API key may be empty in local development but should be set in production.
        api_key = os.getenv("DATAMENTOR_API_KEY", "")

        seed_path = os.getenv("DATAMENTOR_SEED_PATH") or None
        if seed_path is not None and not os.path.isfile(seed_path):
            raise ValueError(f"DATAMENTOR_SEED_PATH does not point to a file: {seed_path}")

        worker_python = os.getenv("DATAMENTOR_WORKER_PYTHON") or sys.executable
        worker_preload = _parse_list(os.getenv("DATAMENTOR_WORKER_PRELOAD"), ["pandas"])

        def _int_var(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                raise ValueError(f"Invalid integer for {name}: {val}")

        max_execution_seconds = _int_var("DATAMENTOR_MAX_EXECUTION_SECONDS", 30)
        boot_timeout_seconds = _int_var("DATAMENTOR_BOOT_TIMEOUT_SECONDS", 120)
        max_prompt_rows = _int_var("DATAMENTOR_MAX_PROMPT_ROWS", 20)
        log_level = os.getenv("DATAMENTOR_LOG_LEVEL", "INFO").upper()
        port = _int_var("PORT", 8080)

        mentor_api_key = os.getenv("DATAMENTOR_MENTOR_API_KEY") or os.getenv("OPENAI_API_KEY") or ""
        mentor_base_url = (
            os.getenv("DATAMENTOR_MENTOR_BASE_URL")
            or os.getenv("OPENAI_BASE_URL")
            or "https://api.openai.com/v1"
        )
        mentor_model = os.getenv("DATAMENTOR_MENTOR_MODEL", "gpt-4o-mini")
        mentor_timeout_seconds = _int_var("DATAMENTOR_MENTOR_TIMEOUT_SECONDS", 60)

        return cls(
            api_key=api_key,
            seed_path=seed_path,
            worker_python=worker_python,
            worker_preload=worker_preload,
            max_execution_seconds=max_execution_seconds,
            boot_timeout_seconds=boot_timeout_seconds,
            max_prompt_rows=max_prompt_rows,
            log_level=log_level,
            port=port,
            mentor_api_key=mentor_api_key,
            mentor_base_url=mentor_base_url,
            mentor_model=mentor_model,
            mentor_timeout_seconds=mentor_timeout_seconds,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        It exists to provide a more intuitive name when consumed in
        application code.
        """
        return cls.load()

    def worker_command(self) -> List[str]:
        """Command line that launches the interpreter worker subprocess."""
        return [self.worker_python, "-m", "datamentor.backends.worker", *self.worker_preload]
