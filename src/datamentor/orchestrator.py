"""
Execution orchestrator.

The orchestrator is the entry point for running a learner submission.  It
picks the backend for the topic, runs the code, normalises the outcome and
turns it into the prompt that tells the mentor what actually happened.

Backends are injected so tests (or several app instances) can each own
their own database and worker.
"""

from __future__ import annotations

import json
import logging
from typing import List

from .backends import InterpreterBridge, RelationalEngine
from .models import (
    Backend,
    FailureResult,
    TableSchema,
    TabularResult,
    TextualResult,
    Topic,
    UnifiedResult,
)
from .normalizer import normalize


logger = logging.getLogger("datamentor.orchestrator")

EMPTY_SOURCE_MESSAGE = "No code to execute."


def describe_schema(schema: List[TableSchema]) -> str:
    """Render tables as ``name (col, col)`` joined with ``and``."""
    if not schema:
        return "no tables"
    return " and ".join(
        f"{table.name} ({', '.join(column.name for column in table.columns)})"
        for table in schema
    )


class ExecutionOrchestrator:
    """Routes submissions to the backend that serves their topic.

    Attributes
    ----------
    schema: list of TableSchema
        Database schema as re-read after the most recent SQL execution
        attempt (or reset).  Always refreshed, never trusted across runs.
    last_output: str
        Stdout captured by the most recent interpreter execution, empty
        after SQL runs.
    """

    def __init__(
        self,
        engine: RelationalEngine,
        bridge: InterpreterBridge,
        max_prompt_rows: int = 20,
    ) -> None:
        self.engine = engine
        self.bridge = bridge
        self.max_prompt_rows = max_prompt_rows
        self.schema: List[TableSchema] = engine.introspect_schema()
        self.last_output = ""

    async def run(self, topic: Topic, source_text: str) -> UnifiedResult:
        """Execute ``source_text`` on the backend selected by ``topic``.

        Errors in the learner's code come back as :class:`FailureResult`.
        Environment problems of the interpreter backend (``NotReady``,
        ``ProtocolFault``, ``InvariantViolation``) propagate to the caller.
        """
        self.last_output = ""
        if not source_text.strip():
            return FailureResult(message=EMPTY_SOURCE_MESSAGE)

        backend = topic.backend
        if backend is Backend.RELATIONAL:
            try:
                raw = self.engine.execute(source_text)
            finally:
                # DDL/DML may have taken partial effect even on failure.
                self.refresh_schema()
        else:
            raw = await self.bridge.submit(source_text)
            self.last_output = raw.output

        result = normalize(backend, raw)
        logger.info("Executed %s submission -> %s", backend.value, result.kind)
        return result

    def refresh_schema(self) -> List[TableSchema]:
        self.schema = self.engine.introspect_schema()
        return self.schema

    def reset_database(self) -> List[TableSchema]:
        self.engine.reset()
        return self.refresh_schema()

    def summarize(
        self, topic: Topic, source_text: str, result: UnifiedResult, output: str = ""
    ) -> str:
        """Build the prompt that relays an execution to the mentor.

        ``output`` is stdout captured alongside a table (see
        :attr:`last_output`); textual results already carry their lines.
        """
        language = "sql" if topic is Topic.SQL else "python"
        fenced = f"```{language}\n{source_text}\n```"

        if isinstance(result, FailureResult):
            prompt = (
                f"The student tried to run this {topic.value} code:\n{fenced}\n\n"
                f"It failed with the error: {result.message}\n\n"
                "Explain the error in a didactic way."
            )
        elif isinstance(result, TabularResult):
            printed = f"Output (stdout):\n{output.rstrip()}\n\n" if output.strip() else ""
            prompt = (
                f"The student ran this {topic.value} code:\n{fenced}\n\n"
                f"{printed}"
                f"The REAL result was a table with columns: {', '.join(result.columns) or '(none)'} "
                f"and {len(result.rows)} row(s).\n{self._render_rows(result)}\n\n"
                "Check whether it is correct for the current challenge and give feedback."
            )
        else:
            prompt = (
                f"The student ran this {topic.value} code:\n{fenced}\n\n"
                f"Output (stdout):\n{self._render_lines(result)}\n\n"
                "Analyse the code and the result. Give feedback."
            )

        if topic is Topic.SQL:
            prompt += f"\n\nThe tables currently in the database are: {describe_schema(self.schema)}."
        return prompt

    def _render_rows(self, result: TabularResult) -> str:
        shown = result.rows[: self.max_prompt_rows]
        payload = {"columns": result.columns, "rows": shown}
        text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
        hidden = len(result.rows) - len(shown)
        if hidden > 0:
            text += f"\n({hidden} more row(s) not shown)"
        return text

    @staticmethod
    def _render_lines(result: TextualResult) -> str:
        return "\n".join(result.lines)
