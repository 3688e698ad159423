"""LangChain tool-calling assembly using Gemini via Vertex AI.

All *reasoning* over the business data is performed by the LLM.
We provide:
- The invoice history inlined in the prompt (primary dataset)
- Read-only data source tools the model may call any number of times
- A single failure boundary that turns every outcome into a QueryResponse
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence
from langchain_core.messages import BaseMessage, ToolMessage
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.tools import BaseTool
from langchain_google_vertexai import ChatVertexAI
from pydantic import ValidationError

from config import Settings
from reporting import failure_response, success_response
from schemas import QueryRequest, QueryResponse
from tools import DataSourceTool, ToolDiagnostic, build_data_source_tools

logger = logging.getLogger(__name__)

# When to reach for each tool rather than the inlined invoices.
TOOL_HINTS: Dict[str, str] = {
    "listCatalogServices": "Use this for questions about services that haven't been sold (e.g., \"worst selling service\").",
    "listPersonnel": "Use this for questions about salespeople who haven't made sales, or staff details and pay rates.",
    "listInventoryItems": "Use this for inventory, stock levels, assets, or product profitability (compare 'costValue' and 'unitValue').",
    "listTasks": "Use this to analyze employee productivity, see who has completed the most tasks, or check on pending work.",
    "listAttendanceRecords": "Use this to analyze employee work hours, check who is currently clocked in, or total hours worked in a period.",
    "listCustomers": "Use this to find a specific customer not present in the invoice list, or to list all customers.",
}

SYSTEM_TEMPLATE = (
    "You are an expert business analyst for a company named {company}.\n"
    "Your task is to analyze the provided data and answer the user's question about the company's operations, "
    "including sales, inventory, customers, and employee performance. Today's date is {today}.\n\n"
    "You have access to tools that read the company's database. Use them whenever the question requires data "
    "beyond the provided invoice history.\n\n"
    "- **Invoice Data**: The primary sales data is provided in the prompt as a JSON array of invoice objects. "
    "Use it first for all sales-related questions.\n"
    "- **Tools for Additional Data**:\n"
    "{tool_guide}\n\n"
    "Combine information from multiple sources if needed to answer complex questions "
    "(e.g., \"Who is my most productive employee based on sales, tasks, and hours worked?\").\n\n"
    "Analyze the data and provide a clear, concise, and helpful answer.\n"
    "Format your response using Markdown for readability. You can use lists, bold text, and tables if it helps.\n"
    "If the data and tools are insufficient to answer the question, state that clearly.\n"
    "For any monetary values, use the {currency} symbol."
)

HUMAN_TEMPLATE = (
    "Here is the invoice data:\n"
    "```json\n"
    "{dataset}\n"
    "```\n\n"
    "Here is the user's question:\n"
    "\"{query}\""
)

ANALYST_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_TEMPLATE),
    ("human", HUMAN_TEMPLATE),
])


# ===== Completion collaborator =====
@dataclass(frozen=True)
class CompletionOutcome:
    text: str | None = None
    error: str | None = None
    tool_calls: int = 0


class Completion(Protocol):
    def __call__(self, messages: List[BaseMessage], tools: Sequence[BaseTool],
                 cancel: threading.Event | None = None) -> CompletionOutcome: ...


def message_text(message: BaseMessage) -> str:
    """Plain text of a chat message whose content may be a string or a list of content blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


class ToolCallingCompletion:
    """Runs the model, executes the tools it asks for, and repeats until it answers in text."""

    def __init__(self, chat_model: Any, max_tool_rounds: int = 8, max_parallel_tools: int = 4):
        self._chat_model = chat_model
        self._max_tool_rounds = max_tool_rounds
        self._max_parallel_tools = max(1, max_parallel_tools)

    def __call__(self, messages: List[BaseMessage], tools: Sequence[BaseTool],
                 cancel: threading.Event | None = None) -> CompletionOutcome:
        try:
            return self._run(list(messages), tools, cancel)
        except Exception as exc:  # transport, quota and timeout errors surface as many SDK types
            logger.exception("Completion call failed")
            return CompletionOutcome(error=str(exc) or type(exc).__name__)

    def _run(self, messages: List[BaseMessage], tools: Sequence[BaseTool],
             cancel: threading.Event | None) -> CompletionOutcome:
        model = self._chat_model.bind_tools(list(tools)) if tools else self._chat_model
        by_name = {tool.name: tool for tool in tools}
        calls_made = 0
        for round_no in range(self._max_tool_rounds + 1):
            if cancel is not None and cancel.is_set():
                return CompletionOutcome(error="The request was cancelled.", tool_calls=calls_made)
            reply = model.invoke(messages)
            requested = list(getattr(reply, "tool_calls", None) or [])
            if not requested:
                text = message_text(reply)
                if not text.strip():
                    return CompletionOutcome(error="The model returned an empty response.", tool_calls=calls_made)
                return CompletionOutcome(text=text, tool_calls=calls_made)
            if round_no == self._max_tool_rounds:
                break
            messages.append(reply)
            messages.extend(self._dispatch(requested, by_name))
            calls_made += len(requested)
        return CompletionOutcome(
            error=f"The model was still requesting data after {self._max_tool_rounds} tool rounds.",
            tool_calls=calls_made,
        )

    def _dispatch(self, requested: List[Dict[str, Any]], by_name: Mapping[str, BaseTool]) -> List[ToolMessage]:
        # Tools are read-only, so one round's calls may run in parallel; results keep request order.
        def run_one(call: Dict[str, Any]) -> ToolMessage:
            name = call.get("name", "")
            call_id = call.get("id") or name
            tool = by_name.get(name)
            if tool is None:
                logger.warning("Model requested unknown tool %r", name)
                return ToolMessage(content=f"Unknown tool '{name}'.", tool_call_id=call_id, name=name, status="error")
            return ToolMessage(content=tool.invoke(call.get("args") or {}), tool_call_id=call_id, name=name)

        workers = min(self._max_parallel_tools, len(requested))
        if workers <= 1:
            return [run_one(call) for call in requested]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(run_one, requested))


def make_chat_model(settings: Settings) -> ChatVertexAI:
    return ChatVertexAI(
        model_name=settings.model_name,
        project=settings.project,
        location=settings.location,
        temperature=0,
    )


# ===== Orchestrator =====
class QueryState(str, Enum):
    IDLE = "idle"
    PROMPT_ASSEMBLED = "prompt_assembled"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED = {
    QueryState.IDLE: {QueryState.PROMPT_ASSEMBLED},
    QueryState.PROMPT_ASSEMBLED: {QueryState.AWAITING_COMPLETION},
    QueryState.AWAITING_COMPLETION: {QueryState.COMPLETED, QueryState.FAILED},
}


@dataclass
class QuerySession:
    """One request's lifetime: state plus the tool diagnostics gathered while awaiting the model."""
    state: QueryState = QueryState.IDLE
    diagnostics: List[ToolDiagnostic] = field(default_factory=list)
    history: List[QueryState] = field(default_factory=lambda: [QueryState.IDLE])

    def advance(self, target: QueryState) -> None:
        if target not in _ALLOWED.get(self.state, set()):
            raise RuntimeError(f"illegal query state transition {self.state.value} -> {target.value}")
        logger.debug("Query session %s -> %s", self.state.value, target.value)
        self.state = target
        self.history.append(target)


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err.get("loc", ())) or "request"
        problems.append(f"{where}: {err.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(problems)


class QueryOrchestrator:
    def __init__(self, completion: Completion, tools: Sequence[DataSourceTool], settings: Settings,
                 today: Callable[[], date] = date.today):
        self._completion = completion
        self._tools = list(tools)
        self._settings = settings
        self._today = today

    @property
    def tools(self) -> List[DataSourceTool]:
        return list(self._tools)

    def tool_guide(self) -> str:
        lines = []
        for tool in self._tools:
            hint = TOOL_HINTS.get(tool.name, tool.descriptor.description)
            lines.append(f"  - `{tool.name}`: {hint}")
        return "\n".join(lines) if lines else "  - (no tools are available for this request)"

    def build_messages(self, request: QueryRequest) -> List[BaseMessage]:
        return ANALYST_PROMPT.format_messages(
            company=self._settings.company_name,
            today=self._today().strftime("%a %b %d %Y"),
            tool_guide=self.tool_guide(),
            currency=self._settings.currency_symbol,
            dataset=request.primary_dataset_json,
            query=request.query,
        )

    def answer_query(self, request: QueryRequest | Mapping[str, Any],
                     cancel: threading.Event | None = None) -> QueryResponse:
        if not isinstance(request, QueryRequest):
            try:
                request = QueryRequest.model_validate(request)
            except ValidationError as exc:
                logger.info("Rejected malformed query request: %s", exc.error_count())
                return failure_response(_validation_message(exc))

        session = QuerySession()
        messages = self.build_messages(request)
        session.advance(QueryState.PROMPT_ASSEMBLED)

        lc_tools = [tool.as_langchain_tool(session.diagnostics) for tool in self._tools]
        session.advance(QueryState.AWAITING_COMPLETION)
        try:
            outcome = self._completion(messages, lc_tools, cancel)
        except Exception as exc:  # a collaborator that breaks its no-raise contract still ends the session cleanly
            logger.exception("Completion collaborator raised")
            outcome = CompletionOutcome(error=str(exc) or type(exc).__name__)

        for diag in session.diagnostics:
            logger.warning("Tool %s: %s%s", diag.tool, diag.message,
                           f" (record {diag.record_id})" if diag.record_id else "")

        if outcome.error is None and outcome.text:
            session.advance(QueryState.COMPLETED)
            logger.info("Query answered after %d tool call(s)", outcome.tool_calls)
            return success_response(outcome.text)

        session.advance(QueryState.FAILED)
        logger.error("Error in sales analysis: %s", outcome.error)
        return failure_response(f"The AI analysis failed: {outcome.error or 'An unexpected error occurred.'}")


def build_orchestrator(settings: Settings, store: Any) -> QueryOrchestrator:
    completion = ToolCallingCompletion(
        make_chat_model(settings),
        max_tool_rounds=settings.max_tool_rounds,
        max_parallel_tools=settings.max_parallel_tools,
    )
    return QueryOrchestrator(completion, build_data_source_tools(store), settings)
