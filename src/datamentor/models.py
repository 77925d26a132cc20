"""Pydantic models shared by the execution core and the HTTP API.

The unified result is a tagged union: every execution, whatever backend ran
it, collapses into exactly one of :class:`TabularResult`,
:class:`TextualResult` or :class:`FailureResult`.  The worker wire messages
are validated with the same machinery so that an unrecognised message is
detected at the bridge boundary instead of leaking further in.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class Backend(str, Enum):
    RELATIONAL = "relational"
    INTERPRETED = "interpreted"


class Topic(str, Enum):
    """Subject the learner is studying; selects the execution backend."""

    SQL = "SQL"
    PANDAS = "Pandas"

    @property
    def backend(self) -> Backend:
        if self is Topic.SQL:
            return Backend.RELATIONAL
        return Backend.INTERPRETED


class WorkerState(str, Enum):
    STOPPED = "stopped"
    BOOTING = "booting"
    READY = "ready"
    BUSY = "busy"
    FAULTED = "faulted"


class ExecutionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: Backend
    source_text: str


# ---------------------------------------------------------------------------
# Unified result
# ---------------------------------------------------------------------------


class TabularResult(BaseModel):
    """Named columns with equal-length rows."""

    kind: Literal["tabular"] = "tabular"
    columns: List[str]
    rows: List[List[Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _rows_match_columns(self) -> "TabularResult":
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"row {index} has {len(row)} cells but there are {width} columns"
                )
        return self


class TextualResult(BaseModel):
    kind: Literal["textual"] = "textual"
    lines: List[str]


class FailureResult(BaseModel):
    kind: Literal["failure"] = "failure"
    message: str


UnifiedResult = Annotated[
    Union[TabularResult, TextualResult, FailureResult],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Schema introspection
# ---------------------------------------------------------------------------


class ColumnInfo(BaseModel):
    name: str
    type: str


class TableSchema(BaseModel):
    name: str
    columns: List[ColumnInfo] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Worker protocol
# ---------------------------------------------------------------------------


class TableData(BaseModel):
    """``DataFrame.to_json(orient="split")`` decomposition of a value."""

    columns: List[str]
    data: List[List[Any]]


class ReadyMessage(BaseModel):
    type: Literal["READY"]


class ResultMessage(BaseModel):
    type: Literal["RESULT"]
    output: str = ""
    result: Optional[str] = None
    table: Optional[TableData] = None


class ErrorMessage(BaseModel):
    type: Literal["ERROR"]
    error: str


WorkerMessage = Annotated[
    Union[ReadyMessage, ResultMessage, ErrorMessage],
    Field(discriminator="type"),
]

worker_message_adapter: TypeAdapter = TypeAdapter(WorkerMessage)


class InterpreterResult(BaseModel):
    """Raw outcome of one interpreter submission, before normalisation."""

    output: str = ""
    result: Optional[str] = None
    table: Optional[TableData] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class SessionCreateRequest(BaseModel):
    """Request body for starting a mentor session."""

    topic: Topic
    request: Optional[str] = Field(
        default=None,
        description="Specific subject the learner asked for, e.g. 'I want to learn JOIN'.",
    )


class SessionInfo(BaseModel):
    topic: Topic
    reply: str
    starter_code: str
    interpreter_ready: bool
    schema_info: List[TableSchema] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Request body for executing code in the current session."""

    code: str = Field(..., description="Source code to execute.")


class ExecuteResponse(BaseModel):
    result: UnifiedResult
    reply: str
    schema_info: List[TableSchema] = Field(default_factory=list)


class ChatRequest(BaseModel):
    text: str


class ChatResponse(BaseModel):
    reply: str


class ResetRequest(BaseModel):
    confirm: bool = Field(
        default=False,
        description="Must be true; all INSERT/UPDATE/DELETE changes are discarded.",
    )


class ResetResponse(BaseModel):
    result: UnifiedResult
    schema_info: List[TableSchema] = Field(default_factory=list)


class InterpreterStatus(BaseModel):
    state: WorkerState
    ready: bool
