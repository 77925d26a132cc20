from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from datamentor.errors import NotReady
from datamentor.models import (
    FailureResult,
    InterpreterResult,
    TableData,
    TabularResult,
    TextualResult,
    Topic,
)
from datamentor.normalizer import NO_OUTPUT_PLACEHOLDER
from datamentor.orchestrator import EMPTY_SOURCE_MESSAGE, ExecutionOrchestrator, describe_schema

from .conftest import FakeBridge


@pytest.mark.asyncio
async def test_sql_topic_runs_on_engine_only(engine):
    bridge = FakeBridge()
    orchestrator = ExecutionOrchestrator(engine, bridge)

    result = await orchestrator.run(Topic.SQL, "SELECT * FROM produtos LIMIT 10;")

    assert isinstance(result, TabularResult)
    assert len(result.rows) == 10
    assert all(len(row) == len(result.columns) for row in result.rows)
    assert bridge.calls == []


@pytest.mark.asyncio
async def test_pandas_topic_runs_on_bridge_only(engine):
    bridge = FakeBridge(
        InterpreterResult(table=TableData(columns=["a", "b"], data=[[1, 2], [3, 4], [5, 6]]))
    )
    engine.execute = MagicMock(side_effect=AssertionError("engine must not be called"))
    orchestrator = ExecutionOrchestrator(engine, bridge)

    result = await orchestrator.run(Topic.PANDAS, "df")

    assert result == TabularResult(columns=["a", "b"], rows=[[1, 2], [3, 4], [5, 6]])
    assert bridge.calls == ["df"]


@pytest.mark.asyncio
async def test_print_only_script_is_textual(engine):
    bridge = FakeBridge(InterpreterResult(output="Total: 650\n", result=None))
    orchestrator = ExecutionOrchestrator(engine, bridge)

    result = await orchestrator.run(Topic.PANDAS, "print('Total:', 650)")
    assert result == TextualResult(lines=["Total: 650"])


@pytest.mark.asyncio
async def test_silent_script_gets_placeholder(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge(InterpreterResult(output="")))
    result = await orchestrator.run(Topic.PANDAS, "x = 1")
    assert result == TextualResult(lines=[NO_OUTPUT_PLACEHOLDER])


@pytest.mark.asyncio
@pytest.mark.parametrize("source", ["", "   ", "\n\t\n"])
async def test_blank_source_contacts_no_backend(engine, source):
    bridge = FakeBridge()
    engine.execute = MagicMock(side_effect=AssertionError("engine must not be called"))
    orchestrator = ExecutionOrchestrator(engine, bridge)

    for topic in Topic:
        assert await orchestrator.run(topic, source) == FailureResult(message=EMPTY_SOURCE_MESSAGE)
    assert bridge.calls == []


@pytest.mark.asyncio
async def test_schema_is_refreshed_after_failed_batch(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge())
    assert "rascunho" not in [table.name for table in orchestrator.schema]

    result = await orchestrator.run(Topic.SQL, "CREATE TABLE rascunho (x INTEGER); SELCT 1;")

    assert isinstance(result, FailureResult)
    assert "rascunho" in [table.name for table in orchestrator.schema]


@pytest.mark.asyncio
async def test_failed_select_leaves_schema_unchanged(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge())
    before = orchestrator.schema

    result = await orchestrator.run(Topic.SQL, "SELCT 1;")

    assert isinstance(result, FailureResult)
    assert result.message
    assert orchestrator.schema == before


@pytest.mark.asyncio
async def test_reset_then_select_sees_seed_data(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge())
    await orchestrator.run(Topic.SQL, "UPDATE produtos SET nome = 'Alterado' WHERE id = 1")

    orchestrator.reset_database()
    result = await orchestrator.run(Topic.SQL, "SELECT nome FROM produtos WHERE id = 1")

    assert result.rows == [["Notebook"]]


@pytest.mark.asyncio
async def test_bridge_errors_propagate(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge(error=NotReady("loading")))
    with pytest.raises(NotReady):
        await orchestrator.run(Topic.PANDAS, "df")


@pytest.mark.asyncio
async def test_learner_error_is_data(engine):
    bridge = FakeBridge(InterpreterResult(error="ZeroDivisionError: division by zero"))
    orchestrator = ExecutionOrchestrator(engine, bridge)
    result = await orchestrator.run(Topic.PANDAS, "1/0")
    assert result == FailureResult(message="ZeroDivisionError: division by zero")


def test_summarize_sql_success_embeds_rows_and_schema(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge(), max_prompt_rows=2)
    result = TabularResult(columns=["id"], rows=[[1], [2], [3]])

    prompt = orchestrator.summarize(Topic.SQL, "SELECT id FROM produtos", result)

    assert "```sql\nSELECT id FROM produtos\n```" in prompt
    assert "3 row(s)" in prompt
    assert "(1 more row(s) not shown)" in prompt
    assert "produtos (id, nome, categoria, preco, estoque)" in prompt


def test_summarize_failure_mentions_error(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge())
    prompt = orchestrator.summarize(Topic.PANDAS, "1/0", FailureResult(message="ZeroDivisionError"))
    assert "ZeroDivisionError" in prompt
    assert "```python\n1/0\n```" in prompt
    assert "tables currently in the database" not in prompt


def test_summarize_text_output(engine):
    orchestrator = ExecutionOrchestrator(engine, FakeBridge())
    prompt = orchestrator.summarize(Topic.PANDAS, "print(1)", TextualResult(lines=["1"]))
    assert "Output (stdout):\n1" in prompt


def test_describe_schema(engine):
    assert describe_schema([]) == "no tables"
    text = describe_schema(engine.introspect_schema())
    assert text.startswith("produtos (id, nome, categoria, preco, estoque) and clientes (")


@pytest.mark.asyncio
async def test_stdout_next_to_a_table_reaches_the_prompt(engine):
    bridge = FakeBridge(
        InterpreterResult(output="(2, 1)\n", table=TableData(columns=["a"], data=[[1], [2]]))
    )
    orchestrator = ExecutionOrchestrator(engine, bridge)

    result = await orchestrator.run(Topic.PANDAS, "print(df.shape)\ndf")
    assert orchestrator.last_output == "(2, 1)\n"

    prompt = orchestrator.summarize(
        Topic.PANDAS, "print(df.shape)\ndf", result, output=orchestrator.last_output
    )
    assert "Output (stdout):\n(2, 1)\n\nThe REAL result was a table" in prompt

    await orchestrator.run(Topic.SQL, "SELECT 1")
    assert orchestrator.last_output == ""
