"""Exception taxonomy for the execution service.

Errors raised by learner code are *not* represented here: SQL and Python
failures travel as :class:`~datamentor.models.FailureResult` data so they
can be shown to the learner and forwarded to the mentor verbatim.  The
exceptions below describe problems with the execution environment itself
or with how a caller drives it.
"""

from __future__ import annotations


class DataMentorError(Exception):
    """Base class for service errors."""


class WorkerError(DataMentorError):
    """Raised at the interpreter bridge boundary."""


class NotReady(WorkerError):
    """The interpreter worker has not finished booting (or is not running).

    Recoverable: retry once the bridge reports readiness.
    """


class ProtocolFault(WorkerError):
    """The worker died or emitted an unrecognised message mid-call.

    Terminal for the current worker instance; the bridge must be restarted.
    """


class WorkerTimeout(ProtocolFault):
    """A submitted snippet did not complete before its deadline."""


class InvariantViolation(RuntimeError):
    """A second call was submitted while another one was still pending.

    This is a bug in the caller and deliberately does not derive from
    :class:`WorkerError`, so it is never handled as a recoverable condition.
    """


class SessionBusy(DataMentorError):
    """An execution is already in flight for the mentor session."""


class NoActiveSession(DataMentorError):
    """An operation needs a topic but no session has been started."""


class MentorConfigError(DataMentorError):
    """The chat mentor is misconfigured or used before it was initialised."""
