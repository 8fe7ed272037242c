import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from toolrelay.domain.models.events import StreamDelta
from toolrelay.domain.models.ui import UIActionType
from toolrelay.domain.services.authorization import AuthorizationGate
from toolrelay.domain.services.call_history import CallHistory
from toolrelay.domain.services.failure_escalation import FailureTracker
from toolrelay.domain.services.tool_orchestrator import ToolCallOrchestrator
from toolrelay.infrastructure.config.store import JsonConfigStore
from toolrelay.infrastructure.executors.mcp_executor import McpToolExecutor
from toolrelay.infrastructure.executors.router import ServerExecutorRouter
from toolrelay.infrastructure.executors.web_search_executor import WebSearchExecutor
from toolrelay.infrastructure.mcp.catalog_cache import ToolCatalogCache
from toolrelay.infrastructure.mcp.connection_manager import ConnectionManager
from toolrelay.infrastructure.websearch.providers import WebSearchClient


READ_FILE = {
    "name": "read_file",
    "description": "Read a note",
    "inputSchema": {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Note path"}},
        "required": ["path"],
    },
}

LIST_NOTES = {"name": "list_notes", "description": "List all notes"}

OK_PAYLOAD = {"content": [{"type": "text", "text": "ok"}]}


class FakeDispatcher:
    """Records everything the orchestrator writes to the chat state."""

    def __init__(self):
        self.actions = []
        self.notices = []
        self.errors = []
        self.cancelled = set()

    def dispatch(self, message_id, action):
        self.actions.append((message_id, action))

    def notify(self, title, description):
        self.notices.append((title, description))

    def mark_error(self, message_id, error):
        self.errors.append((message_id, error))

    def is_cancelled(self, message_id):
        return message_id in self.cancelled

    def types(self, message_id=None):
        return [a.type for m, a in self.actions if message_id is None or m == message_id]

    def of_type(self, action_type):
        return [a for _, a in self.actions if a.type == action_type]

    def text(self, message_id=None):
        return "".join(
            a.chunk or "" for m, a in self.actions
            if a.type == UIActionType.TOKEN_APPEND and (message_id is None or m == message_id)
        )


class FakeTransport:
    """In-memory MCP client."""

    def __init__(self, tools=None, results=None, connected=()):
        self.tools: Dict[str, List[Any]] = dict(tools or {})
        self.results: Dict[tuple, Any] = dict(results or {})
        self.statuses = {name: "connected" for name in connected}
        self.calls = []
        self.connects = []
        self.list_calls = []
        self.call_delay = 0.0
        self.list_delay = 0.0
        self.connect_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None

    async def connect(self, name, config):
        self.connects.append((name, config))
        if self.connect_error:
            raise self.connect_error
        self.statuses[name] = "connected"

    async def disconnect(self, name):
        self.statuses[name] = "disconnected"

    async def list_tools(self, name):
        self.list_calls.append(name)
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error:
            raise self.list_error
        return list(self.tools.get(name, []))

    async def call_tool(self, name, tool, args=None):
        self.calls.append((name, tool, dict(args or {})))
        if self.call_delay:
            await asyncio.sleep(self.call_delay)
        result = self.results.get((name, tool), OK_PAYLOAD)
        if isinstance(result, Exception):
            raise result
        return result

    def status(self, name):
        return self.statuses.get(name, "disconnected")


class FakeModel:
    """Scripted model: each turn is a list of text chunks/StreamDeltas, or an exception."""

    model_name = "test-model"

    def __init__(self, turns=None):
        self.turns = list(turns or [])
        self.calls = []

    async def stream_chat(self, messages):
        self.calls.append(list(messages))
        turn = self.turns.pop(0) if self.turns else []
        if isinstance(turn, Exception):
            raise turn
        for piece in turn:
            yield piece if isinstance(piece, StreamDelta) else StreamDelta(content=piece)
        yield StreamDelta(done=True)


@dataclass
class Stack:
    orchestrator: ToolCallOrchestrator
    transport: FakeTransport
    model: FakeModel
    dispatcher: FakeDispatcher
    config: JsonConfigStore
    gate: AuthorizationGate
    history: CallHistory
    failures: FailureTracker
    catalog: ToolCatalogCache
    mcp: McpToolExecutor
    web_search: WebSearchExecutor


def notes_config(auto_authorize=True, **extra):
    data = {
        "servers": [{"name": "notes", "config": {"command": "notes-server"}, "enabled": True}],
        "authorization": {"defaultAutoAuthorize": auto_authorize, "serverConfigs": {}},
    }
    data.update(extra)
    return data


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def transport():
    return FakeTransport(tools={"notes": [READ_FILE, LIST_NOTES]})


@pytest.fixture
def make_stack():
    """Factory for a fully wired orchestrator over fakes."""

    def build(turns=None, config=None, transport=None, call_timeout_s=15.0, provider="duckduckgo", credentials=None):
        dispatcher = FakeDispatcher()
        transport = transport or FakeTransport(tools={"notes": [READ_FILE, LIST_NOTES]})
        config = config or JsonConfigStore(data=notes_config())
        history = CallHistory()
        failures = FailureTracker()
        gate = AuthorizationGate(config, dispatcher)
        catalog = ToolCatalogCache(transport)
        mcp = McpToolExecutor(
            transport, catalog, ConnectionManager(transport, config), gate, history, failures,
            call_timeout_s=call_timeout_s,
        )
        web_search = WebSearchExecutor(
            WebSearchClient(), dispatcher, gate, history, failures,
            provider=provider, credentials=credentials,
        )
        model = FakeModel(turns)
        orchestrator = ToolCallOrchestrator(
            ServerExecutorRouter(mcp, web_search), model, dispatcher, config, gate, failures=failures
        )
        return Stack(orchestrator, transport, model, dispatcher, config, gate, history, failures,
                     catalog, mcp, web_search)

    return build


@pytest.fixture
def make_model():
    return FakeModel
