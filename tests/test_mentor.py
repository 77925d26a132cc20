"""Tests for the chat-completion mentor and its selection from config."""

from __future__ import annotations

import dataclasses
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from datamentor.config import Config
from datamentor.errors import MentorConfigError
from datamentor.mentor import ChatMentor, build_mentor
from datamentor.models import Topic
from datamentor.orchestrator import ExecutionOrchestrator
from datamentor.session import FALLBACK_REPLY, MentorSession, OfflineMentor, system_instruction

from .conftest import FakeBridge


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(*replies):
    create = AsyncMock(side_effect=list(replies))
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))), create


@pytest.mark.asyncio
async def test_initialize_opens_chat_with_topic_instruction():
    client, create = _client(_completion(" Hello! "), _completion("Well done."))
    mentor = ChatMentor(api_key="k", model="test-model", client=client)

    mentor.initialize(Topic.SQL)
    assert await mentor.send_message("The learner started SQL.") == "Hello!"
    assert await mentor.send_message("The student ran this SQL code") == "Well done."

    messages = create.await_args.kwargs["messages"]
    assert create.await_args.kwargs["model"] == "test-model"
    assert messages[0] == {"role": "system", "content": system_instruction(Topic.SQL)}
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert "The learner's current subject is: SQL." in messages[0]["content"]


@pytest.mark.asyncio
async def test_reinitialize_discards_previous_history():
    client, _ = _client(_completion("first"))
    mentor = ChatMentor(api_key="k", model="m", client=client)
    mentor.initialize(Topic.SQL)
    await mentor.send_message("hi")

    mentor.initialize(Topic.PANDAS)

    assert mentor.history == [{"role": "system", "content": system_instruction(Topic.PANDAS)}]


@pytest.mark.asyncio
async def test_failed_turn_leaves_history_untouched():
    client, _ = _client(ConnectionError("gateway down"))
    mentor = ChatMentor(api_key="k", model="m", client=client)
    mentor.initialize(Topic.PANDAS)

    with pytest.raises(ConnectionError):
        await mentor.send_message("df")
    assert len(mentor.history) == 1


@pytest.mark.asyncio
async def test_session_falls_back_when_chat_fails(engine):
    client, _ = _client(ConnectionError("gateway down"), ConnectionError("gateway down"))
    mentor = ChatMentor(api_key="k", model="m", client=client)
    session = MentorSession(ExecutionOrchestrator(engine, FakeBridge()), mentor)

    assert await session.start(Topic.SQL) == FALLBACK_REPLY
    result, reply = await session.run_code("SELECT 1 AS um")
    assert result.rows == [[1]]
    assert reply == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_send_before_initialize_is_rejected():
    client, create = _client()
    mentor = ChatMentor(api_key="k", model="m", client=client)
    with pytest.raises(MentorConfigError):
        await mentor.send_message("hi")
    create.assert_not_awaited()


def test_missing_api_key_is_rejected():
    with pytest.raises(MentorConfigError):
        ChatMentor(api_key="", model="m")


def test_build_mentor_follows_config(config):
    assert isinstance(build_mentor(config), OfflineMentor)

    configured = dataclasses.replace(config, mentor_api_key="sk-test", mentor_model="gpt-test")
    mentor = build_mentor(configured)
    assert isinstance(mentor, ChatMentor)
    assert mentor.model == "gpt-test"


def test_config_reads_mentor_settings(monkeypatch):
    monkeypatch.delenv("DATAMENTOR_MENTOR_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("DATAMENTOR_MENTOR_MODEL", "gpt-env")
    monkeypatch.setenv("DATAMENTOR_MENTOR_TIMEOUT_SECONDS", "15")

    config = Config.load()

    assert config.mentor_api_key == "sk-env"
    assert config.mentor_model == "gpt-env"
    assert config.mentor_timeout_seconds == 15
