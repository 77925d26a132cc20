"""Data Mentor execution service.

Runs learner code on a real engine and relays the outcome to a tutoring
agent.  SQL goes to an in-memory SQLite database; pandas code goes to an
isolated Python worker subprocess.  Both kinds of output collapse into one
result shape.

The top-level modules include:

* ``config`` – configuration handling for environment variables.
* ``models`` – Pydantic models for results, schema, worker messages and the HTTP API.
* ``errors`` – exceptions for environment and caller errors.
* ``backends`` – the SQLite engine adapter and the interpreter worker bridge.
* ``normalizer`` – maps raw backend output onto the unified result.
* ``orchestrator`` – routes submissions and builds the prompts for the mentor.
* ``session`` – the learner/mentor loop around the orchestrator.
* ``mentor`` – chat-completion mentor for OpenAI-compatible endpoints.
* ``api`` – FastAPI application exposing HTTP endpoints.

The API is not imported here so the worker subprocess stays lightweight.
"""

__version__ = "0.1.0"
