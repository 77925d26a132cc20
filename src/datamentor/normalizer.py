"""Collapse raw backend output into a :data:`~datamentor.models.UnifiedResult`.

:func:`normalize` is pure and never raises.  A shape it does not recognise
is rendered as text instead of failing the whole execution.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from .models import (
    Backend,
    FailureResult,
    InterpreterResult,
    TabularResult,
    TextualResult,
    UnifiedResult,
)

NO_OUTPUT_PLACEHOLDER = "(No visual output. Use print() or leave the variable on the last line.)"


def normalize(backend: Backend, raw: Any) -> UnifiedResult:
    if backend is Backend.RELATIONAL:
        return _normalize_relational(raw)
    return _normalize_interpreted(raw)


def _normalize_relational(raw: Any) -> UnifiedResult:
    if isinstance(raw, FailureResult):
        return FailureResult(message=raw.message)
    if isinstance(raw, TabularResult):
        return _tabular(raw.columns, raw.rows, raw)
    if isinstance(raw, Mapping) and "columns" in raw:
        rows = raw.get("rows", raw.get("values", []))
        return _tabular(raw["columns"], rows, raw)
    return _best_effort(raw)


def _normalize_interpreted(raw: Any) -> UnifiedResult:
    if isinstance(raw, Mapping):
        try:
            raw = InterpreterResult.model_validate(raw)
        except ValidationError:
            return _best_effort(raw)
    if not isinstance(raw, InterpreterResult):
        return _best_effort(raw)

    if raw.error is not None:
        return FailureResult(message=raw.error)
    if raw.table is not None:
        return _tabular(raw.table.columns, raw.table.data, raw)
    if raw.output.strip():
        return TextualResult(lines=raw.output.rstrip("\n").splitlines())
    return TextualResult(lines=[NO_OUTPUT_PLACEHOLDER])


def _tabular(columns: Any, rows: Any, raw: Any) -> UnifiedResult:
    try:
        return TabularResult(
            columns=[str(column) for column in columns],
            rows=[list(row) for row in rows],
        )
    except (TypeError, ValueError):
        return _best_effort(raw)


def _best_effort(raw: Any) -> TextualResult:
    try:
        text = str(raw)
    except Exception as exc:
        text = f"<unprintable {type(raw).__name__}: {exc}>"
    return TextualResult(lines=text.splitlines() or [text])
