"""
Tool instruction extraction - recovers tool calls embedded in model text.

Supported syntaxes, tried in order:
1. Channel style:  <|channel|>commentary to=server[.tool] ... <|message|>{json}<|call|>
2. XML wrapper:    <tool_call>{json}</tool_call>
3. MCP wrapper:    <use_mcp_tool><server_name/><tool_name/><arguments>{json}</arguments></use_mcp_tool>
4. Delimited:      to= >>server>>tool>>{json}>>
5. Bare JSON:      {"type": "tool_call", ...}

Each syntax is a try-parse function returning ``(ok, value)``; malformed
candidates simply do not match and the next syntax is tried.
"""

from __future__ import annotations
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.events import ContentToken, ParsedToolCall, StreamEvent, ToolCallEvent
from ..models.tool import WEB_SEARCH_SERVER, ToolCallRequest, fingerprint_args

logger = logging.getLogger(__name__)

CHANNEL = "<|channel|>"
MESSAGE = "<|message|>"
CALL = "<|call|>"

# Native servers that may be addressed without a tool name
NATIVE_DEFAULT_TOOLS: Dict[str, str] = {WEB_SEARCH_SERVER: "search"}

SERVER_ALIASES = ("server", "mcp", "provider")
TOOL_ALIASES = ("tool", "tool_name", "name")
ARGS_ALIASES = ("parameters", "args", "params")

_USE_MCP_BLOCK = re.compile(r"<use_mcp_tool>([\s\S]*?)</use_mcp_tool>", re.IGNORECASE)
_TOOL_CALL_BLOCK = re.compile(r"<tool_call>([\s\S]*?)</tool_call>", re.IGNORECASE)
_USE_MCP_TAIL = re.compile(r"<use_mcp_tool>[\s\S]*$", re.IGNORECASE)
_TOOL_CALL_TAIL = re.compile(r"<tool_call>[\s\S]*$", re.IGNORECASE)
_SERVER_NAME = re.compile(r"<server_name[^>]*>([\s\S]*?)</server_name>", re.IGNORECASE)
_TOOL_NAME = re.compile(r"<tool_name[^>]*>([\s\S]*?)</tool_name>", re.IGNORECASE)
_ARGUMENTS = re.compile(r"<arguments[^>]*>([\s\S]*?)</arguments>", re.IGNORECASE)
_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"```\s*$")
_TYPE_TOOL_CALL = re.compile(r'"type"\s*:\s*"tool_call"', re.IGNORECASE)
_CARD_MARKER = '"__tool_call_card__"'
_EXTRA_NEWLINES = re.compile(r"\n{3,}")

# Channel header: marked, "commentary to=" or a bare "to=server.tool"
_CHANNEL_HEADER = re.compile(
    r"(?P<marked><\|channel\|>\s*commentary\s+|\bcommentary\s+)?"
    r"(?<![\w=/?&.])to=(?!\s*>>)(?P<target>[^<{\n]*)",
    re.IGNORECASE,
)
_BARE_TARGET = re.compile(r"^[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_.-]+)?$")
_CHANNEL_FILLER = re.compile(r"(?:\s+|<\|constrain\|>[^<{\s]*|<\|message\|>)*")
_DELIMITED_HEADER = re.compile(
    r"to=\s*>>\s*(?P<server>[^>\s]+)\s*>>\s*(?P<tool>[^>\s]+)\s*>>\s*",
    re.IGNORECASE,
)
_DELIMITED_TAIL = re.compile(r"to=\s*>>[^\n]*$", re.IGNORECASE)

_PARTIAL_OPENERS = ("<use_mcp_tool>", "<tool_call>", CHANNEL)
_MIN_PARTIAL = 4

_FAST_PATH = (
    re.compile(r"commentary\s+to=", re.IGNORECASE),
    re.compile(r"<use_mcp_tool>", re.IGNORECASE),
    re.compile(r"<tool_call>", re.IGNORECASE),
    _TYPE_TOOL_CALL,
    re.compile(r"to=\s*>>", re.IGNORECASE),
    re.compile(re.escape(_CARD_MARKER)),
)

ParseOutcome = Tuple[bool, Optional[ToolCallRequest]]


def balanced_json_end(text: str, start: int) -> int:
    """Index just past the JSON object opening at ``start``; -1 if unbalanced."""
    if start < 0 or start >= len(text) or text[start] != "{":
        return -1
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def try_parse_json(text: str) -> Tuple[bool, Any]:
    """json.loads as an (ok, value) pair."""
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False, None


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```lang fence."""
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip()))


def extract_json_object(text: str) -> Tuple[bool, Any]:
    """Parse the first '{' .. last '}' slice of ``text`` (after fence stripping)."""
    fenced = strip_code_fence(text)
    start = fenced.find("{")
    end = fenced.rfind("}")
    if start == -1 or end <= start:
        return False, None
    return try_parse_json(fenced[start:end + 1])


def card_id_for(server: str, tool: str, args: Dict[str, Any]) -> str:
    """Deterministic card id for a parsed instruction."""
    digest = hashlib.sha1(f"{server}|{tool}|{fingerprint_args(args)}".encode("utf-8")).hexdigest()
    return f"tc_{digest[:12]}"


def _first(obj: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = obj.get(key)
        if value:
            return value
    return None


def _make_request(server: Any, tool: Any, args: Any) -> ParseOutcome:
    server = str(server or "").strip()
    tool = str(tool or "").strip()
    if not server or not tool:
        return False, None
    if isinstance(args, str):
        ok, decoded = try_parse_json(args)
        args = decoded if ok else None
    args = args if isinstance(args, dict) else {}
    return True, ToolCallRequest(server=server, tool=tool, args=args, card_id=card_id_for(server, tool, args))


def _pick(obj: Any) -> ParseOutcome:
    """Normalize the JSON field aliases shared by <tool_call> and bare JSON."""
    if not isinstance(obj, dict):
        return False, None
    return _make_request(_first(obj, SERVER_ALIASES), _first(obj, TOOL_ALIASES), _first(obj, ARGS_ALIASES))


@dataclass
class _Span:
    start: int
    end: int


def _channel_spans(text: str) -> List[Tuple[_Span, Optional[Tuple[str, Dict[str, Any]]]]]:
    """Locate channel-style instructions; second item is (target, args) when complete."""
    found = []
    pos = 0
    while True:
        m = _CHANNEL_HEADER.search(text, pos)
        if not m:
            break
        target = m.group("target").strip()
        marked = bool(m.group("marked"))
        if not marked and not _BARE_TARGET.match(target):
            pos = m.end()
            continue
        filler = _CHANNEL_FILLER.match(text, m.end())
        json_start = filler.end() if filler else m.end()
        if json_start < len(text) and text[json_start] == "{":
            json_end = balanced_json_end(text, json_start)
            if json_end == -1:
                # Opened but not finished; only the tail can hold it
                found.append((_Span(m.start(), len(text)), None))
                break
            ok, args = try_parse_json(text[json_start:json_end])
            end = json_end
            rest = text[end:]
            stripped = rest.lstrip(" \t")
            if stripped.startswith(CALL):
                end += len(rest) - len(stripped) + len(CALL)
            found.append((_Span(m.start(), end), (target, args) if ok and isinstance(args, dict) else None))
            pos = end
            continue
        if marked and json_start >= len(text):
            # Marked header still streaming in
            found.append((_Span(m.start(), len(text)), None))
            break
        pos = m.end()
    return found


def _delimited_spans(text: str) -> List[Tuple[_Span, Optional[Tuple[str, str, Dict[str, Any]]]]]:
    found = []
    pos = 0
    while True:
        m = _DELIMITED_HEADER.search(text, pos)
        if not m:
            break
        json_start = m.end()
        if json_start >= len(text) or text[json_start] != "{":
            pos = m.end()
            continue
        json_end = balanced_json_end(text, json_start)
        if json_end == -1:
            found.append((_Span(m.start(), len(text)), None))
            break
        ok, args = try_parse_json(text[json_start:json_end])
        end = json_end
        rest = text[end:]
        stripped = rest.lstrip(" \t")
        if stripped.startswith(">>"):
            end += len(rest) - len(stripped) + 2
        found.append((
            _Span(m.start(), end),
            (m.group("server"), m.group("tool"), args) if ok and isinstance(args, dict) else None,
        ))
        pos = end
    return found


def _json_object_spans(text: str, predicate: Callable[[str], bool]) -> List[_Span]:
    """Top-level balanced JSON objects whose text satisfies ``predicate``."""
    spans = []
    i = text.find("{")
    while i != -1:
        end = balanced_json_end(text, i)
        if end != -1 and predicate(text[i:end]):
            spans.append(_Span(i, end))
            i = text.find("{", end)
        else:
            i = text.find("{", i + 1)
    return spans


def _remove_spans(text: str, spans: List[_Span]) -> str:
    if not spans:
        return text
    pieces = []
    cursor = 0
    for span in sorted(spans, key=lambda s: s.start):
        if span.start < cursor:
            continue
        pieces.append(text[cursor:span.start])
        cursor = span.end
    pieces.append(text[cursor:])
    return "".join(pieces)


@dataclass(frozen=True)
class ExtractionResult:
    """Cleaned text plus the first recovered instruction, if any."""
    cleaned_text: str
    request: Optional[ToolCallRequest] = None


class ToolInstructionExtractor:
    """Stateless detector and cleaner for tool-call instructions in model text."""

    def __init__(self, native_default_tools: Optional[Dict[str, str]] = None):
        self._native_defaults = dict(NATIVE_DEFAULT_TOOLS if native_default_tools is None else native_default_tools)
        self._parsers: List[Callable[[str], ParseOutcome]] = [
            self.try_parse_channel,
            self.try_parse_tool_call,
            self.try_parse_use_mcp_tool,
            self.try_parse_delimited,
            self.try_parse_bare_json,
        ]

    # ---------- Detection ----------
    @staticmethod
    def contains_instruction(text: str) -> bool:
        """Cheap check used to pass ordinary text through untouched."""
        if not text:
            return False
        return any(p.search(text) for p in _FAST_PATH)

    def extract(self, text: str) -> ExtractionResult:
        """Strip instructions from ``text`` and return the first parsed request."""
        if not text:
            return ExtractionResult(cleaned_text="")
        return ExtractionResult(cleaned_text=self.clean(text), request=self.parse(text))

    def parse(self, text: str) -> Optional[ToolCallRequest]:
        """First instruction found by the ordered parser chain."""
        if not text:
            return None
        for parser in self._parsers:
            ok, request = parser(text)
            if ok:
                return request
        return None

    def try_parse_channel(self, text: str) -> ParseOutcome:
        if "to=" not in text.lower():
            return False, None
        for _span, parsed in _channel_spans(text):
            if not parsed:
                continue
            target, args = parsed
            server, _, tool = target.partition(".")
            server = server.strip()
            tool = re.sub(r"\s+", "_", tool.strip())
            if not tool:
                tool = self._native_defaults.get(server, "")
            ok, request = _make_request(server, tool, args)
            if ok:
                return ok, request
        return False, None

    def try_parse_tool_call(self, text: str) -> ParseOutcome:
        for match in _TOOL_CALL_BLOCK.finditer(text):
            ok, obj = extract_json_object(match.group(1))
            if ok:
                ok, request = _pick(obj)
                if ok:
                    return ok, request
        return False, None

    def try_parse_use_mcp_tool(self, text: str) -> ParseOutcome:
        for match in _USE_MCP_BLOCK.finditer(text):
            block = match.group(1)
            server = _SERVER_NAME.search(block)
            tool = _TOOL_NAME.search(block)
            arguments = _ARGUMENTS.search(block)
            args: Optional[Dict[str, Any]] = None
            if arguments and arguments.group(1).strip():
                ok, value = extract_json_object(arguments.group(1))
                if ok and isinstance(value, dict):
                    args = value
            ok, request = _make_request(
                server.group(1) if server else "",
                tool.group(1) if tool else "",
                args,
            )
            if ok:
                return ok, request
        return False, None

    def try_parse_delimited(self, text: str) -> ParseOutcome:
        if ">>" not in text:
            return False, None
        for _span, parsed in _delimited_spans(text):
            if parsed:
                ok, request = _make_request(*parsed)
                if ok:
                    return ok, request
        return False, None

    def try_parse_bare_json(self, text: str) -> ParseOutcome:
        if not _TYPE_TOOL_CALL.search(text):
            return False, None
        for span in _json_object_spans(text, lambda s: bool(_TYPE_TOOL_CALL.search(s))):
            ok, obj = try_parse_json(text[span.start:span.end])
            if ok:
                ok, request = _pick(obj)
                if ok:
                    return ok, request
        return False, None

    # ---------- Cleaning ----------
    @staticmethod
    def clean(text: str) -> str:
        """Remove complete and half-finished instructions plus card markers."""
        if not text:
            return ""
        cleaned = _USE_MCP_BLOCK.sub("", text)
        cleaned = _TOOL_CALL_BLOCK.sub("", cleaned)
        cleaned = _remove_spans(cleaned, [span for span, _ in _channel_spans(cleaned)])
        cleaned = _remove_spans(cleaned, [span for span, _ in _delimited_spans(cleaned)])
        cleaned = _remove_spans(
            cleaned,
            _json_object_spans(cleaned, lambda s: bool(_TYPE_TOOL_CALL.search(s)) or _CARD_MARKER in s),
        )
        cleaned = _USE_MCP_TAIL.sub("", cleaned)
        cleaned = _TOOL_CALL_TAIL.sub("", cleaned)
        cleaned = _DELIMITED_TAIL.sub("", cleaned)
        cleaned = _strip_partial_opener(cleaned)
        return _EXTRA_NEWLINES.sub("\n\n", cleaned)


def _strip_partial_opener(text: str) -> str:
    lowered = text.lower()
    for opener in _PARTIAL_OPENERS:
        for size in range(len(opener) - 1, _MIN_PARTIAL - 1, -1):
            if lowered.endswith(opener[:size]):
                return text[:-size]
    return text


def rewrite_events_with_tool_calls(
    events: List[StreamEvent],
    extractor: Optional[ToolInstructionExtractor] = None
) -> List[StreamEvent]:
    """Replace instruction-bearing content events with cleaned text plus a tool_call event."""
    extractor = extractor or ToolInstructionExtractor()
    out: List[StreamEvent] = []
    for event in events:
        if not isinstance(event, ContentToken) or not extractor.contains_instruction(event.content):
            out.append(event)
            continue
        result = extractor.extract(event.content)
        if result.cleaned_text.strip():
            out.append(ContentToken(result.cleaned_text))
        if result.request is not None:
            out.append(to_tool_call_event(event.content, result.request))
    return out


def to_tool_call_event(raw: str, request: ToolCallRequest) -> ToolCallEvent:
    """Wrap a parsed request as a stream event."""
    return ToolCallEvent(
        raw=raw,
        parsed=ParsedToolCall(
            server_name=request.server,
            tool_name=request.tool,
            arguments=json.dumps(request.args, ensure_ascii=False) if request.args else None,
        ),
    )


# ---------- Streaming suppression ----------

_GUARD_TRIGGERS = (
    ("channel", re.compile(r"<\|channel\|>\s*commentary\s+to=", re.IGNORECASE)),
    ("channel", re.compile(r"\bcommentary\s+to=", re.IGNORECASE)),
    ("delimited", re.compile(r"to\s*=\s*>>", re.IGNORECASE)),
    ("minimal", re.compile(r"(?<![\w=/?&.])to\s*=\s*[a-z0-9_.-]+", re.IGNORECASE)),
    ("xml", re.compile(r"<use_mcp_tool>", re.IGNORECASE)),
    ("xml", re.compile(r"<tool_call>", re.IGNORECASE)),
)
_XML_CLOSERS = ("</use_mcp_tool>", "</tool_call>")
_TRAILERS = (CALL, ">>")


@dataclass
class GuardOutput:
    """Visible text released by the guard plus instructions it swallowed."""
    visible: str = ""
    instructions: List[Tuple[str, ToolCallRequest]] = field(default_factory=list)

    def extend(self, other: GuardOutput) -> None:
        self.visible += other.visible
        self.instructions.extend(other.instructions)


class StreamingGuard:
    """
    Incremental suppression valve for streamed content.

    Holds back a small tail window so instruction triggers that straddle
    chunk boundaries are caught. Once triggered it swallows text until the
    instruction ends (balanced JSON, a closing tag, or a hard boundary for
    the bare ``to=`` form), then hands the swallowed text to the extractor.
    """

    def __init__(
        self,
        extractor: Optional[ToolInstructionExtractor] = None,
        guard_window: int = 64,
        on_detecting: Optional[Callable[[bool], None]] = None
    ):
        self._extractor = extractor or ToolInstructionExtractor()
        self._window = guard_window
        self._on_detecting = on_detecting
        self.reset()

    def reset(self) -> None:
        """Drop all buffered state."""
        self._pending = ""
        self._buf = ""
        self._kind: Optional[str] = None
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._seen_json = False
        self._await_trailer = False

    @property
    def suppressing(self) -> bool:
        return self._kind is not None

    def push(self, chunk: str) -> GuardOutput:
        """Feed a content chunk; returns what may be shown now."""
        out = GuardOutput()
        if chunk:
            self._pending += chunk
        while self._pending:
            if self._await_trailer:
                if not self._consume_trailer():
                    break
                continue
            if self._kind is None:
                hit = self._find_trigger(self._pending)
                if hit is None:
                    if len(self._pending) > self._window:
                        cut = len(self._pending) - self._window
                        out.visible += self._pending[:cut]
                        self._pending = self._pending[cut:]
                    break
                index, kind = hit
                out.visible += self._pending[:index]
                self._pending = self._pending[index:]
                self._start(kind)
                continue
            consumed, finished = self._scan(self._pending)
            self._buf += self._pending[:consumed]
            self._pending = self._pending[consumed:]
            if not finished:
                break
            out.extend(self._finish())
            self._await_trailer = True
        return out

    def release(self) -> str:
        """Hand back the guard window early unless an instruction is being swallowed."""
        if self._kind is not None or self._await_trailer:
            return ""
        held = self._pending
        self._pending = ""
        return held

    def flush(self) -> GuardOutput:
        """Release everything at end of stream."""
        out = GuardOutput()
        if self._kind is not None:
            self._buf += self._pending
            self._pending = ""
            out.extend(self._finish())
        out.visible += self._pending
        self.reset()
        return out

    def _find_trigger(self, text: str) -> Optional[Tuple[int, str]]:
        best: Optional[Tuple[int, str]] = None
        for kind, pattern in _GUARD_TRIGGERS:
            m = pattern.search(text)
            if m and (best is None or m.start() < best[0]):
                best = (m.start(), kind)
        return best

    def _start(self, kind: str) -> None:
        self._kind = kind
        self._buf = ""
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._seen_json = False
        if self._on_detecting:
            self._on_detecting(True)

    def _scan(self, text: str) -> Tuple[int, bool]:
        """Consume characters of ``text``; returns (count, instruction finished)."""
        if self._kind == "xml":
            combined = (self._buf + text).lower()
            base = len(self._buf)
            best = -1
            for closer in _XML_CLOSERS:
                idx = combined.find(closer, max(0, base - len(closer)))
                if idx != -1:
                    end = idx + len(closer)
                    best = end if best == -1 else min(best, end)
            if best == -1:
                return len(text), False
            return best - base, True
        for i, ch in enumerate(text):
            if self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
                continue
            if ch == '"' and self._seen_json:
                self._in_string = True
            elif ch == "{":
                self._seen_json = True
                self._depth += 1
            elif ch == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0 and self._seen_json:
                    return i + 1, True
            elif self._kind == "minimal" and not self._seen_json and ch in "\n;":
                return i + 1, True
        return len(text), False

    def _consume_trailer(self) -> bool:
        """Strip a trailer such as <|call|> after an instruction; False while undecided."""
        stripped = self._pending.lstrip(" \t")
        for trailer in _TRAILERS:
            if stripped.startswith(trailer):
                self._pending = stripped[len(trailer):]
                self._await_trailer = False
                return True
            if trailer.startswith(stripped):
                return False
        self._await_trailer = False
        return True

    def _finish(self) -> GuardOutput:
        raw = self._buf
        kind = self._kind
        self._kind = None
        self._buf = ""
        if self._on_detecting:
            self._on_detecting(False)
        out = GuardOutput()
        result = self._extractor.extract(raw)
        if result.request is not None:
            logger.debug(f"Guard recovered instruction {result.request.server}.{result.request.tool}")
            out.instructions.append((raw, result.request))
            out.visible = result.cleaned_text.strip()
        elif kind == "minimal":
            # Not an instruction after all
            out.visible = raw
        else:
            out.visible = result.cleaned_text
        return out
