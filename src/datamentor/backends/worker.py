"""
Interpreter worker process.

Launched by :class:`~datamentor.backends.interpreter.InterpreterBridge` as
``python -m datamentor.backends.worker [module ...]``.  The worker imports
the listed modules (pandas by default), announces itself with a single
``READY`` line and then serves requests, one JSON document per line:

* host -> worker: ``{"code": "..."}``
* worker -> host: ``{"type": "RESULT", "output": ..., "result": ..., "table": ...}``
  or ``{"type": "ERROR", "error": ...}``

The namespace is shared across requests, so variables defined by one
snippet remain available to the next, as in a notebook.

The protocol channel is a private duplicate of the original stdout.  File
descriptor 1 is pointed at stderr and stdin at ``/dev/null`` so that learner
code writing to the raw streams or calling ``input()`` cannot corrupt the
conversation with the host.
"""

from __future__ import annotations

import ast
import contextlib
import importlib
import io
import json
import os
import sys
from typing import Any, Dict, List, Optional, TextIO, Tuple

SNIPPET_FILENAME = "<snippet>"


def run_snippet(code: str, namespace: Dict[str, Any]) -> Any:
    """Execute ``code`` and return the value of its trailing expression.

    Returns ``None`` when the last statement is not an expression.
    """
    tree = ast.parse(code, SNIPPET_FILENAME, "exec")
    last_expr: Optional[ast.Expression] = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last_expr = ast.Expression(tree.body.pop().value)
    exec(compile(tree, SNIPPET_FILENAME, "exec"), namespace)
    if last_expr is None:
        return None
    return eval(compile(last_expr, SNIPPET_FILENAME, "eval"), namespace)


def decompose_table(value: Any) -> Optional[Dict[str, List[Any]]]:
    """Return ``{"columns", "data"}`` when ``value`` is a pandas DataFrame.

    ``isinstance(value, pandas.DataFrame)`` is the only tabular predicate.
    Series, numpy arrays and objects that merely look like frames are
    rendered as text.  If pandas was never imported no value can be a
    DataFrame, so the check is skipped.
    """
    pandas = sys.modules.get("pandas")
    if pandas is None or not isinstance(value, pandas.DataFrame):
        return None
    split = json.loads(value.to_json(orient="split"))
    return {"columns": [str(column) for column in split["columns"]], "data": split["data"]}


def handle_request(code: str, namespace: Dict[str, Any]) -> Dict[str, Any]:
    """Run one snippet and build the terminal message for it.

    Anything the learner's code raises, including while its trailing value
    is rendered, becomes an ``ERROR`` message.  The worker itself survives.
    """
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        try:
            value = run_snippet(code, namespace)
            table = decompose_table(value)
            rendered = None if value is None else str(value)
        except (Exception, SystemExit) as exc:
            return {"type": "ERROR", "error": _describe(exc)}
    return {
        "type": "RESULT",
        "output": buffer.getvalue(),
        "result": rendered,
        "table": table,
    }


def _describe(exc: BaseException) -> str:
    try:
        return f"{type(exc).__name__}: {exc}"
    except Exception:
        return type(exc).__name__


def _claim_streams() -> Tuple[TextIO, TextIO]:
    requests = os.fdopen(os.dup(0), "r", encoding="utf-8")
    protocol = os.fdopen(os.dup(1), "w", encoding="utf-8")
    os.dup2(2, 1)
    sys.stdin = open(os.devnull, "r", encoding="utf-8")
    return requests, protocol


def _send(protocol: TextIO, message: Dict[str, Any]) -> None:
    protocol.write(json.dumps(message, default=str) + "\n")
    protocol.flush()


def respond(protocol: TextIO, message: Dict[str, Any]) -> None:
    """Send ``message``, or an ``ERROR`` in its place if it cannot be encoded.

    Encoding happens before anything is written, so a failure never leaves a
    partial line on the protocol channel.
    """
    try:
        line = json.dumps(message, default=str)
    except (TypeError, ValueError, RecursionError) as exc:
        line = json.dumps({"type": "ERROR", "error": f"Failed to encode result: {_describe(exc)}"})
    protocol.write(line + "\n")
    protocol.flush()


def main(argv: Optional[List[str]] = None) -> int:
    preload = sys.argv[1:] if argv is None else argv
    requests, protocol = _claim_streams()

    for module in preload:
        try:
            importlib.import_module(module)
        except Exception as exc:
            _send(protocol, {"type": "ERROR", "error": f"Failed to load {module}: {exc}"})
            return 1
    _send(protocol, {"type": "READY"})

    namespace: Dict[str, Any] = {"__name__": "__main__"}
    for line in requests:
        if not line.strip():
            continue
        try:
            code = json.loads(line)["code"]
            if not isinstance(code, str):
                raise TypeError("code must be a string")
        except (ValueError, KeyError, TypeError) as exc:
            _send(protocol, {"type": "ERROR", "error": f"Failed to parse request: {exc}"})
            continue
        respond(protocol, handle_request(code, namespace))
    return 0


if __name__ == "__main__":
    sys.exit(main())
