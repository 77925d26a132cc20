"""
Mentor session: the loop between the learner, the backends and the mentor.

The mentor itself (an LLM chat) is an external collaborator.  Anything
implementing :class:`MentorAgent` can be plugged in.  The session makes sure
the mentor is told the real outcome after every execution, so it never has
to guess what the code would have done.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Protocol, Tuple

from .errors import NoActiveSession, SessionBusy, WorkerError
from .models import FailureResult, TextualResult, Topic, UnifiedResult
from .orchestrator import ExecutionOrchestrator, describe_schema


logger = logging.getLogger("datamentor.session")

SYSTEM_INSTRUCTION = """
You are "Data Mentor", a programming instructor specialised in data analysis
with Python (Pandas) and SQL.  Your language is clear, practical and aimed at
beginners.

# GOAL
Teach programming logic and data manipulation in small modules.

# BEHAVIOUR
1. Start of the conversation:
   - If the learner named a subject (e.g. "I want to learn JOIN"), explain that
     concept first and give an example.
   - Otherwise introduce yourself briefly and ask whether they want to follow
     the standard curriculum from the basics or have a specific question.
2. Code review:
   - The learner has a code editor.  When they press "Run", the code is
     executed for real and you receive the code together with the REAL result
     or error.  Never invent results; rely on what you are given.
   - Analyse syntax and logic.  If there is an error, explain why.  If it is
     correct, congratulate them and suggest the next step.

# LESSON STRUCTURE (WHEN INTRODUCING NEW CONCEPTS)
Use Markdown.
1. CONCEPT: short theoretical explanation.
2. SYNTAX: code block with the generic structure.
3. APPLIED EXAMPLE: a simple real case.
4. CHALLENGE: a practical exercise.  Always finish with: "Use the editor to
   solve the challenge and press Run."

# RESTRICTIONS
- Do not propose DROP or DELETE statements.
"""

FALLBACK_REPLY = (
    "Could not reach the Data Mentor. Check the mentor configuration or try again."
)

NO_MENTOR_REPLY = "No mentor is configured. The execution result is shown above."

RESET_MESSAGE = "Database reset successfully."

STARTER_CODE: Dict[Topic, str] = {
    Topic.SQL: "SELECT * FROM produtos LIMIT 10;",
    Topic.PANDAS: (
        "import pandas as pd\n"
        "\n"
        "data = {\n"
        '  "nome": ["Ana", "João", "Maria"],\n'
        '  "vendas": [100, 200, 350],\n'
        '  "meta": [120, 180, 300]\n'
        "}\n"
        "\n"
        "df = pd.DataFrame(data)\n"
        "\n"
        "# The last line is returned automatically\n"
        "df"
    ),
}


def system_instruction(topic: Topic) -> str:
    return f"{SYSTEM_INSTRUCTION}\n\nThe learner's current subject is: {topic.value}."


class MentorAgent(Protocol):
    """Chat collaborator that gives the learner feedback."""

    def initialize(self, topic: Topic) -> None:
        """Open a fresh conversation for ``topic``."""

    async def send_message(self, text: str) -> str:
        """Send one user turn and return the mentor's reply."""


class OfflineMentor:
    """Used when no mentor is configured; executions still work."""

    def initialize(self, topic: Topic) -> None:
        logger.info("No mentor configured; %s session runs without feedback", topic.value)

    async def send_message(self, text: str) -> str:
        return NO_MENTOR_REPLY


def opening_prompt(topic: Topic, schema_text: str, custom_request: Optional[str] = None) -> str:
    if topic is Topic.SQL:
        tables = f"The tables available in the real database are: {schema_text}."
        if custom_request:
            return (
                f'The learner wants to learn SQL and asked: "{custom_request}". '
                f"{tables} Start the lesson using these real tables."
            )
        return (
            f"The learner started SQL. {tables} "
            "Introduce yourself and propose a simple SELECT exercise on these tables."
        )
    if custom_request:
        return f'The learner wants to learn Pandas and asked: "{custom_request}". Start the lesson.'
    return "The learner started Pandas. Introduce yourself and start with the basics of DataFrames."


class MentorSession:
    """One learner's session.  Only one operation may be in flight at a time."""

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        agent: MentorAgent,
        boot_timeout: float = 120,
    ) -> None:
        self.orchestrator = orchestrator
        self.agent = agent
        self.boot_timeout = boot_timeout
        self.topic: Optional[Topic] = None
        self.code = ""
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def start(self, topic: Topic, custom_request: Optional[str] = None) -> str:
        """Switch to ``topic`` and return the mentor's opening message.

        For Pandas the interpreter starts booting in the background; the
        greeting is requested while it boots and the call waits at most
        ``boot_timeout`` seconds for the worker before returning.
        """
        self._claim()
        try:
            self.topic = topic
            self.code = STARTER_CODE[topic]
            self.agent.initialize(topic)

            if topic is Topic.SQL:
                schema = self.orchestrator.refresh_schema()
                prompt = opening_prompt(topic, describe_schema(schema), custom_request)
                return await self._relay(prompt)

            await self.orchestrator.bridge.start()
            prompt = opening_prompt(topic, "", custom_request)
            reply, _ = await asyncio.gather(
                self._relay(prompt),
                self.orchestrator.bridge.wait_ready(self.boot_timeout),
            )
            return reply
        finally:
            self._busy = False

    async def run_code(self, code: str) -> Tuple[UnifiedResult, str]:
        """Execute ``code`` for the current topic and relay the result.

        The mentor is consulted after every execution, successful or not.
        When the interpreter is not ready or has faulted, the mentor is told
        about the failed attempt and the :class:`WorkerError` is re-raised
        so the caller can still tell the cases apart.
        """
        topic = self._require_topic()
        self._claim()
        try:
            self.code = code
            try:
                result = await self.orchestrator.run(topic, code)
            except WorkerError as exc:
                failure = FailureResult(message=str(exc))
                await self._relay(self.orchestrator.summarize(topic, code, failure))
                raise
            prompt = self.orchestrator.summarize(
                topic, code, result, output=self.orchestrator.last_output
            )
            reply = await self._relay(prompt)
        finally:
            self._busy = False
        return result, reply

    async def ask(self, text: str) -> str:
        self._require_topic()
        self._claim()
        try:
            return await self._relay(text)
        finally:
            self._busy = False

    def reset_database(self) -> TextualResult:
        """Restore the seed data.  Callers must have confirmed with the learner."""
        self._claim()
        try:
            self.orchestrator.reset_database()
        finally:
            self._busy = False
        return TextualResult(lines=[RESET_MESSAGE])

    def _require_topic(self) -> Topic:
        if self.topic is None:
            raise NoActiveSession("Select a topic first.")
        return self.topic

    def _claim(self) -> None:
        if self._busy:
            raise SessionBusy("Another operation is still running. Wait for it to finish.")
        self._busy = True

    async def _relay(self, text: str) -> str:
        try:
            reply = await self.agent.send_message(text)
        except Exception:
            logger.exception("Mentor request failed")
            return FALLBACK_REPLY
        return reply or "The mentor returned an empty answer. Try again."
