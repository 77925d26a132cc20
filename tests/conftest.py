from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from datamentor.backends import RelationalEngine
from datamentor.config import Config
from datamentor.models import InterpreterResult, Topic, WorkerState


WORKER_PRELUDE = """
import json
import sys
import time

LOG = sys.argv[1] if len(sys.argv) > 1 else None


def send(message):
    sys.stdout.write(json.dumps(message) + "\\n")
    sys.stdout.flush()


def requests():
    for line in sys.stdin:
        if LOG:
            with open(LOG, "a", encoding="utf-8") as fh:
                fh.write(line)
        yield json.loads(line)["code"]
"""


class RecordingMentor:
    """Mentor stand-in that remembers every prompt it was sent."""

    def __init__(self, reply: str = "Nice work!", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.topics: List[Topic] = []
        self.prompts: List[str] = []

    def initialize(self, topic: Topic) -> None:
        self.topics.append(topic)

    async def send_message(self, text: str) -> str:
        self.prompts.append(text)
        if self.fail:
            raise ConnectionError("mentor unavailable")
        return self.reply


class FakeBridge:
    """In-process stand-in for the interpreter bridge."""

    def __init__(self, result: Optional[InterpreterResult] = None, error: Optional[Exception] = None):
        self.result = result or InterpreterResult(output="")
        self.error = error
        self.calls: List[str] = []
        self.state = WorkerState.READY

    async def submit(self, code: str) -> InterpreterResult:
        self.calls.append(code)
        if self.error is not None:
            raise self.error
        return self.result

    def is_ready(self) -> bool:
        return self.state is WorkerState.READY


@pytest.fixture
def engine():
    db = RelationalEngine()
    yield db
    db.close()


@pytest.fixture
def mentor() -> RecordingMentor:
    return RecordingMentor()


@pytest.fixture
def fake_worker(tmp_path) -> Callable[..., List[str]]:
    """Write a stand-in worker script and return the command launching it.

    The body runs after a prelude providing ``send(message)`` and the
    ``requests()`` generator.  Every received request line is appended to
    ``tmp_path / "requests.log"``.
    """

    def _make(body: str) -> List[str]:
        script = tmp_path / "fake_worker.py"
        script.write_text(WORKER_PRELUDE + textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(script), str(tmp_path / "requests.log")]

    return _make


@pytest.fixture
def request_log(tmp_path) -> Path:
    return tmp_path / "requests.log"


@pytest.fixture
def real_worker_command() -> List[str]:
    return [sys.executable, "-m", "datamentor.backends.worker", "pandas"]


@pytest.fixture
def config() -> Config:
    return Config(
        api_key="",
        seed_path=None,
        worker_python=sys.executable,
        worker_preload=["pandas"],
        max_execution_seconds=30,
        boot_timeout_seconds=60,
        max_prompt_rows=20,
        log_level="INFO",
        port=8080,
    )
