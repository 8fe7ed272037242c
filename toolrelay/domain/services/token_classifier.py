"""
Token classifier - turns raw model increments into the canonical StreamEvent sequence.
"""

from __future__ import annotations
import logging
from typing import Callable, List, Optional, Set

from ..models.events import (
    ContentToken,
    StreamComplete,
    StreamDelta,
    StreamEvent,
    ToolCallEvent,
)
from ..models.tool import ToolCallRequest
from .thinking_strategies import ThinkingStrategy, ThinkingStrategyFactory
from .tool_instructions import (
    StreamingGuard,
    ToolInstructionExtractor,
    card_id_for,
    to_tool_call_event,
)


class TokenClassifier:
    """
    Thinking/content/tool-call classifier for one assistant message.

    A vendor strategy splits reasoning from answer text; answer text then
    passes through a StreamingGuard so instruction syntax never reaches the
    user, even transiently. Instances are reusable after ``reset()``.
    """

    def __init__(
        self,
        strategy: Optional[ThinkingStrategy] = None,
        extractor: Optional[ToolInstructionExtractor] = None,
        on_detecting: Optional[Callable[[bool], None]] = None,
        guard_window: int = 64,
        logger: Optional[logging.Logger] = None
    ):
        self._extractor = extractor or ToolInstructionExtractor()
        self._strategy = strategy or ThinkingStrategyFactory.standard(self._extractor)
        self._guard = StreamingGuard(self._extractor, guard_window=guard_window, on_detecting=on_detecting)
        self._logger = logger or logging.getLogger(__name__)
        self.requests: List[ToolCallRequest] = []
        self.has_visible_text = False
        self._seen: Set[str] = set()

    @classmethod
    def for_model(cls, model_name: Optional[str], **kwargs) -> TokenClassifier:
        """Classifier with the strategy matching ``model_name``."""
        extractor = kwargs.pop("extractor", None) or ToolInstructionExtractor()
        strategy = ThinkingStrategyFactory.for_model(model_name, extractor)
        return cls(strategy=strategy, extractor=extractor, **kwargs)

    @property
    def strategy(self) -> ThinkingStrategy:
        return self._strategy

    def reset(self) -> None:
        """Clear all buffers between messages."""
        self._strategy.reset()
        self._guard.reset()
        self.requests = []
        self.has_visible_text = False
        self._seen = set()

    def feed(self, thinking: Optional[str] = None, content: Optional[str] = None, done: bool = False) -> List[StreamEvent]:
        """Classify one ``(thinking, content, done)`` increment."""
        return self.feed_delta(StreamDelta(content=content, thinking=thinking, done=done))

    def feed_delta(self, delta: StreamDelta) -> List[StreamEvent]:
        """Classify one StreamDelta."""
        out: List[StreamEvent] = []
        for event in self._strategy.process_token(delta):
            if isinstance(event, ContentToken):
                guarded = self._guard.push(event.content)
                self._append_content(out, guarded.visible)
                for raw, request in guarded.instructions:
                    self._append_request(out, raw, request)
            elif isinstance(event, ToolCallEvent):
                self._append_tool_event(out, event)
            elif isinstance(event, StreamComplete):
                flushed = self._guard.flush()
                self._append_content(out, flushed.visible)
                for raw, request in flushed.instructions:
                    self._append_request(out, raw, request)
                out.append(event)
            else:
                # Keep arrival order: held answer text precedes later thinking
                self._append_content(out, self._guard.release())
                out.append(event)
        return out

    def _append_content(self, out: List[StreamEvent], text: str) -> None:
        if not text:
            return
        if text.strip():
            self.has_visible_text = True
        out.append(ContentToken(text))

    def _append_request(self, out: List[StreamEvent], raw: str, request: ToolCallRequest) -> None:
        if request.card_id in self._seen:
            return
        self._seen.add(request.card_id)
        self.requests.append(request)
        self._logger.debug(f"Classifier recovered {request.server}.{request.tool}")
        out.append(to_tool_call_event(raw, request))

    def _append_tool_event(self, out: List[StreamEvent], event: ToolCallEvent) -> None:
        if event.parsed is None:
            out.append(event)
            return
        args = event.parsed.arguments_dict()
        request = ToolCallRequest(
            server=event.parsed.server_name,
            tool=event.parsed.tool_name,
            args=args,
            card_id=card_id_for(event.parsed.server_name, event.parsed.tool_name, args),
        )
        if request.card_id in self._seen:
            return
        self._seen.add(request.card_id)
        self.requests.append(request)
        out.append(event)
