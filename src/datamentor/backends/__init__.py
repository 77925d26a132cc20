"""
Execution backends.

Two backends are available and a request is routed to exactly one of them:

* :class:`RelationalEngine` – an in-memory SQLite database seeded with the
  practice tables, used for SQL lessons.
* :class:`InterpreterBridge` – a long-lived Python worker subprocess with
  pandas preloaded, used for Pandas lessons.  The subprocess side of the
  protocol lives in :mod:`datamentor.backends.worker`.
"""

from .interpreter import InterpreterBridge
from .sql_engine import RelationalEngine

__all__ = [
    "InterpreterBridge",
    "RelationalEngine",
]
