"""
Ollama model transport - streams chat turns as (thinking, content, done) increments.
"""

from __future__ import annotations
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ollama import AsyncClient

from ...domain.models.events import StreamDelta
from ...domain.services.tool_instructions import NATIVE_DEFAULT_TOOLS


def _field(obj: Any, key: str) -> Any:
    """Read a key from a dict or an attribute from a response object."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def native_tool_call_text(call: Any) -> Optional[str]:
    """Render a native tool call as a ``<tool_call>`` instruction the extractor understands."""
    fn = _field(call, "function") or call
    name = _field(fn, "name")
    if not name:
        return None
    args = _field(fn, "arguments") or {}
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            args = {}
    server, _, tool = str(name).partition(".")
    tool = tool or NATIVE_DEFAULT_TOOLS.get(server, "")
    payload: Dict[str, Any] = {"server": server, "parameters": dict(args) if isinstance(args, dict) else {}}
    if tool:
        payload["tool"] = tool
    return f"<tool_call>{json.dumps(payload, ensure_ascii=False)}</tool_call>"


class OllamaModelTransport:
    """ModelTransport backed by ``ollama.AsyncClient.chat(stream=True)``."""

    def __init__(
        self,
        model: str = "gpt-oss:20b",
        host: str = "http://localhost:11434",
        api_key: Optional[str] = None,
        think: bool = True,
        client: Optional[AsyncClient] = None,
        logger: Optional[logging.Logger] = None
    ):
        self._model = model
        self._think = think
        self._logger = logger or logging.getLogger(__name__)
        # Ollama Turbo expects the key without a 'Bearer' prefix
        headers = {"Authorization": api_key} if api_key else None
        self._client = client or AsyncClient(host=host, headers=headers)
        self._logger.info(f"Ollama transport initialized - Model: {model}, Host: {host}")

    @property
    def model_name(self) -> str:
        return self._model

    async def stream_chat(self, messages: List[Dict[str, Any]]) -> AsyncIterator[StreamDelta]:
        """Yield one StreamDelta per chunk; the final chunk carries ``done=True``."""
        kwargs: Dict[str, Any] = {"model": self._model, "messages": messages, "stream": True}
        if self._think:
            kwargs["think"] = True
        stream = await self._client.chat(**kwargs)
        saw_done = False
        async for chunk in stream:
            message = _field(chunk, "message")
            content = _field(message, "content") or ""
            for call in _field(message, "tool_calls") or []:
                text = native_tool_call_text(call)
                if text:
                    content += text
            done = bool(_field(chunk, "done"))
            saw_done = saw_done or done
            yield StreamDelta(
                content=content or None,
                thinking=_field(message, "thinking") or None,
                done=done,
            )
        if not saw_done:
            self._logger.debug("Ollama stream ended without a done chunk")
            yield StreamDelta(done=True)
