"""
Chat-completion mentor.

:class:`ChatMentor` implements :class:`~datamentor.session.MentorAgent` on
top of any OpenAI-compatible endpoint.  Each :meth:`ChatMentor.initialize`
opens a new conversation seeded with the system instruction for the topic;
every later turn is appended to that history so the mentor remembers the
challenge it set and the results it was shown.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import Config
from .errors import MentorConfigError
from .models import Topic
from .session import MentorAgent, OfflineMentor, system_instruction


logger = logging.getLogger("datamentor.mentor")


class ChatMentor:
    """Keeps one chat history and sends it with every turn."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        temperature: float = 0.7,
        client: Any = None,
    ) -> None:
        if not api_key and client is None:
            raise MentorConfigError(
                "Missing mentor API key (DATAMENTOR_MENTOR_API_KEY or OPENAI_API_KEY)."
            )
        self.model = model
        self.temperature = temperature
        self._client = client or AsyncOpenAI(base_url=base_url, api_key=api_key, timeout=timeout_s)
        self._messages: List[Dict[str, str]] = []

    @classmethod
    def from_config(cls, config: Config) -> "ChatMentor":
        return cls(
            api_key=config.mentor_api_key,
            model=config.mentor_model,
            base_url=config.mentor_base_url,
            timeout_s=config.mentor_timeout_seconds,
        )

    @property
    def history(self) -> List[Dict[str, str]]:
        return list(self._messages)

    def initialize(self, topic: Topic) -> None:
        self._messages = [{"role": "system", "content": system_instruction(topic)}]
        logger.info("Mentor chat opened for %s (model %s)", topic.value, self.model)

    async def send_message(self, text: str) -> str:
        if not self._messages:
            raise MentorConfigError("send_message() called before initialize()")
        messages = self._messages + [{"role": "user", "content": text}]
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=float(self.temperature),
        )
        content = (resp.choices[0].message.content or "").strip()
        # A failed turn leaves the history untouched.
        self._messages = messages + [{"role": "assistant", "content": content}]
        return content


def build_mentor(config: Config) -> MentorAgent:
    """Return a :class:`ChatMentor` when an API key is configured."""
    if not config.mentor_api_key:
        return OfflineMentor()
    return ChatMentor.from_config(config)
