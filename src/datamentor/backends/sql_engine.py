"""
Relational backend: a single in-memory SQLite database.

The engine owns one connection for the lifetime of the process.  It is
seeded from a SQL script on construction and can be rebuilt from that same
script with :meth:`RelationalEngine.reset`.  Learner statements may mutate
the database freely; which statements are acceptable is a matter for the
mentor's instructions, not for this adapter.

Schema information is never cached.  Any statement, even one reported as
failed, may have changed the catalog, so callers re-read it after every
execution attempt.
"""

from __future__ import annotations

import logging
import sqlite3
from importlib import resources
from pathlib import Path
from typing import Any, List, Optional, Union

from ..models import ColumnInfo, FailureResult, TableSchema, TabularResult


logger = logging.getLogger("datamentor.sql")


def load_default_seed() -> str:
    """Return the SQL script bundled with the package."""
    return resources.files("datamentor.backends").joinpath("seed.sql").read_text(encoding="utf-8")


def split_statements(sql: str) -> List[str]:
    """Split a batch into complete statements using SQLite's own tokenizer.

    ``sqlite3`` executes one statement per call, so the batch is cut at each
    semicolon that SQLite considers a statement terminator (semicolons inside
    string literals or comments are not).  A trailing statement without a
    semicolon is kept as is.
    """
    statements: List[str] = []
    pending: List[str] = []
    *terminated, tail = sql.split(";")
    for chunk in terminated:
        pending.append(chunk + ";")
        candidate = "".join(pending)
        if sqlite3.complete_statement(candidate):
            statements.append(candidate)
            pending = []
    pending.append(tail)
    statements.append("".join(pending))
    return [statement for statement in statements if statement.strip()]


def _cell(value: Any) -> Any:
    # BLOBs are shown as SQL hex literals; raw bytes are not JSON text.
    if isinstance(value, bytes):
        return f"X'{value.hex().upper()}'"
    return value


class RelationalEngine:
    """Wraps the one SQLite database used by SQL lessons."""

    def __init__(self, seed_sql: Optional[str] = None) -> None:
        """
        Parameters
        ----------
        seed_sql: str, optional
            Script that creates and populates the practice tables.  Defaults
            to the ``seed.sql`` shipped with the package.
        """
        self.seed_sql = seed_sql if seed_sql is not None else load_default_seed()
        self._conn = self._connect()

    @classmethod
    def from_path(cls, seed_path: Optional[str]) -> "RelationalEngine":
        if seed_path is None:
            return cls()
        return cls(Path(seed_path).read_text(encoding="utf-8"))

    def _connect(self) -> sqlite3.Connection:
        # Autocommit so learner DML persists between executions.  The
        # connection may be used from the API's worker threads; callers
        # serialise access.
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        conn.executescript(self.seed_sql)
        return conn

    def execute(self, sql: str) -> Union[TabularResult, FailureResult]:
        """Run ``sql`` as one batch and return the last result set.

        Statements run in order.  The returned table is the last statement
        that produced a result set, with rows in the engine's native order.
        A batch with no result set yields an empty table.  Engine errors are
        returned as :class:`FailureResult` with SQLite's message verbatim;
        effects of statements that ran before the failing one persist.
        """
        columns: List[str] = []
        rows: List[list] = []
        try:
            for statement in split_statements(sql):
                cursor = self._conn.execute(statement)
                if cursor.description is not None:
                    columns = [description[0] for description in cursor.description]
                    rows = [[_cell(value) for value in row] for row in cursor.fetchall()]
        except sqlite3.Error as exc:
            logger.info("SQL execution failed: %s", exc)
            return FailureResult(message=str(exc))
        logger.info("SQL execution returned %d column(s), %d row(s)", len(columns), len(rows))
        return TabularResult(columns=columns, rows=rows)

    def introspect_schema(self) -> List[TableSchema]:
        """Read the current tables and their columns from the catalog."""
        tables = self._conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY rowid"
        ).fetchall()
        schema: List[TableSchema] = []
        for (name,) in tables:
            quoted = '"' + name.replace('"', '""') + '"'
            info = self._conn.execute(f"PRAGMA table_info({quoted})").fetchall()
            # table_info rows: (cid, name, type, notnull, dflt_value, pk)
            columns = [ColumnInfo(name=row[1], type=row[2] or "") for row in info]
            schema.append(TableSchema(name=name, columns=columns))
        return schema

    def reset(self) -> None:
        """Discard all changes and rebuild the database from the seed."""
        self._conn.close()
        self._conn = self._connect()
        logger.info("Database reset to seed state")

    def close(self) -> None:
        self._conn.close()
