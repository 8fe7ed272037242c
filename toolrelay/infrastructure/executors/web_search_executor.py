"""
Native web search executor - search/fetch through the configured provider.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional

from ...domain.interfaces.chat_state import ChatStateDispatcher
from ...domain.models.errors import CredentialsMissing, MissingRequiredArgument, ToolNotFound
from ...domain.models.tool import WEB_SEARCH_SERVER, ToolCallRequest, ToolDescriptor
from ...domain.models.ui import UIAction
from ...domain.services.authorization import AuthorizationGate
from ...domain.services.call_history import CallHistory
from ...domain.services.execution import ExecutionContext
from ...domain.services.failure_escalation import FailureTracker
from ..websearch.providers import PROVIDER_LABELS, WebSearchClient, missing_credentials
from .base import BaseToolExecutor

WEB_SEARCH_TOOLS: List[ToolDescriptor] = [
    ToolDescriptor(
        name="search",
        description="Search the web and return the top results (title, URL, snippet).",
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search keywords in natural language"},
            },
            "required": ["query"],
        },
    ),
    ToolDescriptor(
        name="fetch",
        description="Download a web page and return its readable text.",
        input_schema={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Page address to fetch (http/https)"},
            },
            "required": ["url"],
        },
    ),
]

_REQUIRED_ARGUMENT = {"search": "query", "fetch": "url"}
_EXAMPLES = {"search": {"query": "weather in Berlin today"}, "fetch": {"url": "https://example.com"}}

CREDENTIALS_MISSING_TITLE = "Web search unavailable"


def required_argument_hint(tool: str) -> str:
    """Corrective hint for a missing ``query``/``url``, derived from the native schema."""
    descriptor = next(t for t in WEB_SEARCH_TOOLS if t.name == tool)
    schema = descriptor.input_schema or {}
    argument = _REQUIRED_ARGUMENT[tool]
    prop = schema.get("properties", {}).get(argument, {})
    return "\n".join([
        f"Parameter hint ({WEB_SEARCH_SERVER}.{tool}):",
        f"required: {', '.join(schema.get('required', [argument]))}",
        "params:",
        f" - {argument} ({prop.get('type', 'string')}) [required] - {prop.get('description', '')}",
        f"Example: {json.dumps(_EXAMPLES[tool], ensure_ascii=False, separators=(',', ':'))}",
    ])


class WebSearchExecutor(BaseToolExecutor):
    """Credential and argument checks in front of a WebSearchClient."""

    def __init__(
        self,
        client: WebSearchClient,
        dispatcher: ChatStateDispatcher,
        gate: AuthorizationGate,
        history: CallHistory,
        failures: FailureTracker,
        provider: str = "duckduckgo",
        credentials: Optional[Dict[str, Optional[str]]] = None,
        fetch_max_content_chars: int = 8000,
        logger: Optional[logging.Logger] = None,
        **kwargs
    ):
        super().__init__(gate, history, failures, logger=logger or logging.getLogger(__name__), **kwargs)
        self._client = client
        self._dispatcher = dispatcher
        self.provider = provider
        self.credentials: Dict[str, Optional[str]] = dict(credentials or {})
        self.fetch_max_content_chars = fetch_max_content_chars
        self._conversation_providers: Dict[str, str] = {}

    # ---------- Provider selection ----------
    def set_conversation_provider(self, conversation_id: str, provider: Optional[str]) -> None:
        """Override the provider for one conversation; None restores the default."""
        if provider:
            self._conversation_providers[conversation_id] = provider
        else:
            self._conversation_providers.pop(conversation_id, None)

    def provider_for(self, conversation_id: str) -> str:
        return self._conversation_providers.get(conversation_id) or self.provider

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------- Hooks ----------
    async def validate(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        if request.tool not in _REQUIRED_ARGUMENT:
            raise ToolNotFound(
                request.server,
                request.tool,
                available=[t.name for t in WEB_SEARCH_TOOLS],
                described=[f"{t.name} - {t.description}" for t in WEB_SEARCH_TOOLS],
            )

    async def prepare(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        provider = self.provider_for(context.conversation_id)
        missing = missing_credentials(provider, self.credentials)
        self._logger.debug(
            f"Web search plan: provider={provider} tool={request.tool} "
            f"conversation={context.conversation_id} missing={missing}"
        )
        if missing:
            error = CredentialsMissing(provider, missing)
            self._logger.warning(f"Missing web search credentials for {provider}: {', '.join(missing)}")
            label = PROVIDER_LABELS.get(provider, provider)
            self._dispatcher.notify(CREDENTIALS_MISSING_TITLE, f"{label}: {error.message}")
            self._dispatcher.dispatch(context.message_id, UIAction.token(error.message))
            raise error

        argument = _REQUIRED_ARGUMENT[request.tool]
        value = request.args.get(argument)
        if not isinstance(value, str) or not value.strip():
            raise MissingRequiredArgument(argument, required_argument_hint(request.tool))

    async def invoke(self, context: ExecutionContext, request: ToolCallRequest) -> Any:
        provider = self.provider_for(context.conversation_id)
        if request.tool == "fetch":
            return await self._client.fetch(
                provider, request.args["url"].strip(), self.credentials, self.fetch_max_content_chars
            )
        return await self._client.search(provider, request.args["query"].strip(), self.credentials)

    def known_tools(self, request: ToolCallRequest) -> List[ToolDescriptor]:
        return list(WEB_SEARCH_TOOLS)
