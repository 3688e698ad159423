"""Tests for the query orchestrator and the tool-calling completion loop.

The chat model is scripted, so these tests cover prompt assembly, tool
dispatch, failure isolation and the response envelope without any network.
"""

import json
import threading
from datetime import date

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from analyst_workflow import (
    CompletionOutcome,
    QueryOrchestrator,
    QuerySession,
    QueryState,
    ToolCallingCompletion,
    message_text,
)
from conftest import FakeStore, ScriptedChatModel, tool_request
from tools import build_data_source_tools


def _orchestrator(completion, store, settings):
    return QueryOrchestrator(completion, build_data_source_tools(store), settings, today=lambda: date(2025, 3, 1))


def _request(invoices, query="Which service earned the most?"):
    return {"query": query, "primaryDatasetJson": json.dumps(invoices)}


def _tool_messages(model_call):
    return {m.name: m for m in model_call if isinstance(m, ToolMessage)}


def _assert_envelope(response):
    wire = response.model_dump(by_alias=True, exclude_none=True)
    if response.success:
        assert set(wire) == {"success", "analysisText"}
    else:
        assert set(wire) == {"success", "message"}


def test_answer_without_tools(fake_store, settings, invoices):
    model = ScriptedChatModel([AIMessage(content="**Repair** earned ₹500.00.")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is True
    assert response.analysis_text == "**Repair** earned ₹500.00."
    assert model.bound_tools == [
        "listCatalogServices", "listPersonnel", "listInventoryItems",
        "listTasks", "listAttendanceRecords", "listCustomers",
    ]
    assert fake_store.calls == []
    _assert_envelope(response)


def test_prompt_inlines_dataset_and_query(fake_store, settings, invoices):
    model = ScriptedChatModel([AIMessage(content="done")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)
    dataset = json.dumps(invoices)

    orchestrator.answer_query({"query": "Top seller?", "primaryDatasetJson": dataset})
    system, human = model.calls[0]

    assert isinstance(system, SystemMessage)
    assert isinstance(human, HumanMessage)
    assert "Rising Sun Computers" in system.content
    assert "Sat Mar 01 2025" in system.content
    assert "`listAttendanceRecords`" in system.content
    assert "₹" in system.content
    assert dataset in human.content
    assert human.content.endswith('"Top seller?"')


def test_tools_called_across_rounds(fake_store, settings, invoices):
    model = ScriptedChatModel([
        tool_request("listCatalogServices", "listPersonnel"),
        tool_request("listCatalogServices"),
        AIMessage(content="Cleaning is the worst-selling service."),
    ])
    orchestrator = _orchestrator(ToolCallingCompletion(model, max_parallel_tools=2), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is True
    assert len(model.calls) == 3
    results = _tool_messages(model.calls[1])
    assert [m.tool_call_id for m in model.calls[1] if isinstance(m, ToolMessage)] == ["call-0", "call-1"]
    assert json.loads(results["listCatalogServices"].content)[0]["id"] == "s1"
    assert json.loads(results["listPersonnel"].content)[0]["uid"] == "u1"
    assert sorted(fake_store.calls) == ["personnel", "services", "services"]


def test_failing_source_does_not_abort_query(store_data, settings, invoices):
    store = FakeStore(store_data, failing=("attendance",))
    model = ScriptedChatModel([
        tool_request("listAttendanceRecords", "listTasks"),
        AIMessage(content="Ravi completed 1 task; attendance data is unavailable."),
    ])
    orchestrator = _orchestrator(ToolCallingCompletion(model), store, settings)

    response = orchestrator.answer_query(_request(invoices, "Who is most productive?"))

    assert response.success is True
    results = _tool_messages(model.calls[1])
    assert json.loads(results["listAttendanceRecords"].content) == []
    assert len(json.loads(results["listTasks"].content)) == 1


def test_unknown_tool_gets_error_message(fake_store, settings, invoices):
    model = ScriptedChatModel([tool_request("dropTables"), AIMessage(content="Answered anyway.")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is True
    error = _tool_messages(model.calls[1])["dropTables"]
    assert error.status == "error"
    assert "Unknown tool" in error.content


@pytest.mark.parametrize(
    "request_body, fragment",
    [
        ({"query": "   ", "primaryDatasetJson": "[]"}, "query"),
        ({"query": "Sales?", "primaryDatasetJson": "{not json"}, "not valid JSON"),
        ({"query": "Sales?", "primaryDatasetJson": '{"id": 1}'}, "JSON array"),
        ({"query": "Sales?"}, "primaryDatasetJson"),
        ("just a string", "Invalid request"),
    ],
    ids=["blank_query", "bad_json", "not_array", "missing_dataset", "not_an_object"],
)
def test_malformed_request_never_reaches_model(fake_store, settings, request_body, fragment):
    model = ScriptedChatModel([])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(request_body)

    assert response.success is False
    assert response.message.startswith("Invalid request")
    assert fragment in response.message
    assert model.calls == []
    _assert_envelope(response)


def test_transport_error_becomes_failure(fake_store, settings, invoices):
    model = ScriptedChatModel([RuntimeError("429 quota exceeded")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is False
    assert response.message == "The AI analysis failed: 429 quota exceeded"
    _assert_envelope(response)


def test_empty_answer_is_a_failure(fake_store, settings, invoices):
    model = ScriptedChatModel([AIMessage(content="   ")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is False
    assert "empty response" in response.message


def test_tool_round_limit(fake_store, settings, invoices):
    model = ScriptedChatModel([tool_request("listTasks")] * 3)
    orchestrator = _orchestrator(ToolCallingCompletion(model, max_tool_rounds=2), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices))

    assert response.success is False
    assert "2 tool rounds" in response.message
    assert len(model.calls) == 3


def test_cancelled_request(fake_store, settings, invoices):
    cancel = threading.Event()
    cancel.set()
    model = ScriptedChatModel([AIMessage(content="never used")])
    orchestrator = _orchestrator(ToolCallingCompletion(model), fake_store, settings)

    response = orchestrator.answer_query(_request(invoices), cancel=cancel)

    assert response.success is False
    assert "cancelled" in response.message
    assert model.calls == []


def test_raising_collaborator_is_contained(fake_store, settings, invoices):
    def broken(messages, tools, cancel=None):
        raise ValueError("malformed candidate")

    response = _orchestrator(broken, fake_store, settings).answer_query(_request(invoices))

    assert response.success is False
    assert "malformed candidate" in response.message


def test_custom_completion_sees_all_tools(fake_store, settings, invoices):
    seen = {}

    def completion(messages, tools, cancel=None):
        seen["tools"] = [t.name for t in tools]
        seen["payload"] = json.loads(tools[2].invoke({}))
        return CompletionOutcome(text="ok", tool_calls=1)

    response = _orchestrator(completion, fake_store, settings).answer_query(_request(invoices))

    assert response.success is True
    assert len(seen["tools"]) == 6
    assert seen["payload"][0]["itemType"] == "Stock"


def test_session_transitions():
    session = QuerySession()
    session.advance(QueryState.PROMPT_ASSEMBLED)
    session.advance(QueryState.AWAITING_COMPLETION)
    session.advance(QueryState.COMPLETED)

    assert session.history == [
        QueryState.IDLE, QueryState.PROMPT_ASSEMBLED, QueryState.AWAITING_COMPLETION, QueryState.COMPLETED,
    ]
    with pytest.raises(RuntimeError):
        session.advance(QueryState.FAILED)


def test_session_cannot_skip_prompt():
    with pytest.raises(RuntimeError):
        QuerySession().advance(QueryState.AWAITING_COMPLETION)


def test_message_text_joins_content_blocks():
    message = AIMessage(content=[{"type": "text", "text": "Total: "}, "₹500", {"type": "image_url", "image_url": "x"}])

    assert message_text(message) == "Total: ₹500"
