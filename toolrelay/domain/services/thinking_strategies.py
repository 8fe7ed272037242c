"""
Thinking strategies - per-vendor rules for separating reasoning from answer text.

Every strategy consumes StreamDelta increments and produces StreamEvents in
arrival order. Partial tags that straddle chunk boundaries are held back
until they can be decided, so no token is ever dropped.
"""

from __future__ import annotations
import logging
import re
from typing import Dict, List, Optional, Set, Tuple

from ..models.events import (
    ContentToken,
    StreamComplete,
    StreamDelta,
    StreamEvent,
    ThinkingEnd,
    ThinkingStart,
    ThinkingToken,
)
from .tool_instructions import ToolInstructionExtractor, to_tool_call_event

logger = logging.getLogger(__name__)

_GATE_OPEN = re.compile(r"<use_mcp_tool|<tool_call", re.IGNORECASE)
_GATE_CLOSE = re.compile(r"</use_mcp_tool>|</tool_call>", re.IGNORECASE)
_GATE_PREFIXES = ("<use_mcp_tool", "<tool_call")
_DEDUPE_PREFIX = 100


def _partial_suffix(text: str, candidates: Tuple[str, ...]) -> int:
    """Length of the longest tail of ``text`` that is a proper prefix of a candidate."""
    lowered = text.lower()
    best = 0
    for candidate in candidates:
        for size in range(min(len(candidate) - 1, len(lowered)), 0, -1):
            if size > best and lowered.endswith(candidate[:size]):
                best = size
                break
    return best


class ThinkingStrategy:
    """Base strategy: explicit thinking fields plus tag-delimited reasoning."""

    mode: Optional[str] = None
    # Opening tag -> closing tag, matched case-insensitively
    tags: Dict[str, str] = {"<think>": "</think>"}

    def __init__(self, extractor: Optional[ToolInstructionExtractor] = None):
        self._extractor = extractor or ToolInstructionExtractor()
        self.reset()

    def reset(self) -> None:
        """Clear all accumulation buffers; safe to call repeatedly."""
        self._in_tag_thinking = False
        self._close_tag = ""
        self._explicit_open = False
        self._pending = ""
        self._gate_pending = ""
        self._gating = False
        self._gate_buf = ""
        self._content_buf = ""
        self._seen: Set[str] = set()
        self._finished = False

    # ---------- Public contract ----------
    def process_token(self, delta: StreamDelta) -> List[StreamEvent]:
        """Classify one increment; a ``done`` increment also finalizes."""
        events: List[StreamEvent] = []
        if self._finished:
            return events
        explicit = self._explicit_thinking(delta)
        if explicit:
            events.extend(self._on_explicit_thinking(explicit))
        if delta.content:
            if self._explicit_open:
                self._explicit_open = False
                events.append(ThinkingEnd())
            events.extend(self._scan(delta.content))
        if delta.done:
            events.extend(self.finalize())
        return events

    def finalize(self) -> List[StreamEvent]:
        """Close open regions, release held text and parse buffered content."""
        events: List[StreamEvent] = []
        if self._finished:
            return events
        if self._pending:
            held = self._pending
            self._pending = ""
            if self._in_tag_thinking:
                events.append(ThinkingToken(held))
            else:
                events.extend(self._emit_content(held))
        if self._in_tag_thinking or self._explicit_open:
            self._in_tag_thinking = False
            self._explicit_open = False
            events.append(ThinkingEnd())
        if self._gate_pending:
            self._content_buf += self._gate_pending
            events.append(ContentToken(self._gate_pending))
            self._gate_pending = ""
        if self._gating and self._gate_buf:
            result = self._extractor.extract(self._gate_buf)
            if result.cleaned_text:
                events.append(ContentToken(result.cleaned_text))
            self._gating = False
            self._gate_buf = ""
        request = self._extractor.parse(self._content_buf)
        if request is not None:
            event = self._tool_event(self._content_buf, request)
            if event is not None:
                events.append(event)
        events.append(StreamComplete())
        self._finished = True
        return events

    # ---------- Thinking ----------
    def _explicit_thinking(self, delta: StreamDelta) -> Optional[str]:
        return delta.thinking or delta.reasoning_content

    def _on_explicit_thinking(self, text: str) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        if not self._explicit_open and not self._in_tag_thinking:
            self._explicit_open = True
            events.append(ThinkingStart(self.mode))
        events.append(ThinkingToken(text))
        return events

    def _scan(self, chunk: str) -> List[StreamEvent]:
        """Split content on thinking tags, holding back undecidable tails."""
        events: List[StreamEvent] = []
        text = self._pending + chunk
        self._pending = ""
        while text:
            lowered = text.lower()
            if self._in_tag_thinking:
                idx = lowered.find(self._close_tag)
                if idx == -1:
                    hold = _partial_suffix(text, (self._close_tag,))
                    if len(text) > hold:
                        events.append(ThinkingToken(text[:len(text) - hold]))
                    self._pending = text[len(text) - hold:]
                    break
                if idx:
                    events.append(ThinkingToken(text[:idx]))
                events.append(ThinkingEnd())
                self._in_tag_thinking = False
                text = text[idx + len(self._close_tag):]
                continue
            hit = self._find_open_tag(lowered)
            if hit is None:
                hold = _partial_suffix(text, tuple(self.tags))
                if len(text) > hold:
                    events.extend(self._emit_content(text[:len(text) - hold]))
                self._pending = text[len(text) - hold:]
                break
            idx, tag = hit
            if idx:
                events.extend(self._emit_content(text[:idx]))
            events.append(ThinkingStart(self.mode))
            self._in_tag_thinking = True
            self._close_tag = self.tags[tag]
            text = text[idx + len(tag):]
        return events

    def _find_open_tag(self, lowered: str) -> Optional[Tuple[int, str]]:
        best: Optional[Tuple[int, str]] = None
        for tag in self.tags:
            idx = lowered.find(tag)
            if idx != -1 and (best is None or idx < best[0]):
                best = (idx, tag)
        return best

    # ---------- Content gate ----------
    def _emit_content(self, text: str) -> List[StreamEvent]:
        """Pass answer text, diverting XML-wrapped instructions into tool_call events."""
        events: List[StreamEvent] = []
        text = self._gate_pending + text
        self._gate_pending = ""
        while text:
            if self._gating:
                self._gate_buf += text
                text = ""
                close = _GATE_CLOSE.search(self._gate_buf)
                if not close:
                    break
                segment = self._gate_buf[:close.end()]
                text = self._gate_buf[close.end():]
                self._gating = False
                self._gate_buf = ""
                events.extend(self._close_gate(segment))
                continue
            opened = _GATE_OPEN.search(text)
            if not opened:
                hold = _partial_suffix(text, _GATE_PREFIXES)
                visible = text[:len(text) - hold]
                if visible:
                    self._content_buf += visible
                    events.append(ContentToken(visible))
                self._gate_pending = text[len(text) - hold:]
                break
            if opened.start():
                visible = text[:opened.start()]
                self._content_buf += visible
                events.append(ContentToken(visible))
            self._gating = True
            text = text[opened.start():]
        return events

    def _close_gate(self, segment: str) -> List[StreamEvent]:
        result = self._extractor.extract(segment)
        if result.request is None:
            if result.cleaned_text:
                self._content_buf += result.cleaned_text
                return [ContentToken(result.cleaned_text)]
            return []
        events: List[StreamEvent] = []
        if result.cleaned_text.strip():
            events.append(ContentToken(result.cleaned_text))
        event = self._tool_event(segment, result.request)
        if event is not None:
            events.append(event)
        return events

    def _tool_event(self, raw: str, request) -> Optional[StreamEvent]:
        keys = {raw[:_DEDUPE_PREFIX], request.card_id}
        if keys & self._seen:
            return None
        self._seen.update(keys)
        logger.debug(f"Detected tool instruction {request.server}.{request.tool}")
        return to_tool_call_event(raw, request)


class StandardThinkingStrategy(ThinkingStrategy):
    """<think>...</think> reasoning, no vendor mode."""
    mode = None
    tags = {"<think>": "</think>"}


class DeepSeekThinkingStrategy(ThinkingStrategy):
    """reasoning_content field, then <reasoning> and <think> tags."""
    mode = "deepseek"
    tags = {"<reasoning>": "</reasoning>", "<think>": "</think>"}

    def _explicit_thinking(self, delta: StreamDelta) -> Optional[str]:
        return delta.reasoning_content or delta.thinking


class OllamaThinkingStrategy(ThinkingStrategy):
    """Ollama's native thinking field plus inline <think> tags."""
    mode = "ollama"
    tags = {"<think>": "</think>"}


class ThinkingStrategyFactory:
    """Select a strategy from a model name."""

    @staticmethod
    def for_model(model_name: Optional[str], extractor: Optional[ToolInstructionExtractor] = None) -> ThinkingStrategy:
        name = (model_name or "").lower()
        if "deepseek" in name:
            return DeepSeekThinkingStrategy(extractor)
        # Ollama tags models as name:tag, e.g. gpt-oss:20b
        if name.startswith("ollama/") or ":" in name:
            return OllamaThinkingStrategy(extractor)
        return StandardThinkingStrategy(extractor)

    @staticmethod
    def standard(extractor: Optional[ToolInstructionExtractor] = None) -> ThinkingStrategy:
        return StandardThinkingStrategy(extractor)

    @staticmethod
    def deepseek(extractor: Optional[ToolInstructionExtractor] = None) -> ThinkingStrategy:
        return DeepSeekThinkingStrategy(extractor)

    @staticmethod
    def ollama(extractor: Optional[ToolInstructionExtractor] = None) -> ThinkingStrategy:
        return OllamaThinkingStrategy(extractor)
