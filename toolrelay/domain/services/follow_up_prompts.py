"""Prompt texts for the tool-result follow-up loop.

Provides:
- First-stage guidance after a tool result (error and success variants)
- Second-stage "answer now" guidance used by the nudge turn
- The synthetic user message that carries a tool result back to the model
- A readable fallback built from the raw result when the model stays silent
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from ..models.tool import ResultClass, stringify_payload

CALL_FORMAT = (
    "<use_mcp_tool><server_name>...</server_name><tool_name>...</tool_name>"
    "<arguments>{...}</arguments></use_mcp_tool>"
)

RESULT_CLASS_INSTRUCTIONS: Dict[ResultClass, str] = {
    ResultClass.ERROR: (
        "The tool reported an error. Analyze the error and any parameter hint, then retry "
        "the tool with corrected arguments or use another tool."
    ),
    ResultClass.EMPTY: (
        "The tool returned an empty result. Adjust the parameters and try again, or explain "
        "that nothing was found."
    ),
    ResultClass.DATA: "The tool returned data. Answer the user's question using this result.",
    ResultClass.UNKNOWN: (
        "Review the tool result above and decide whether it answers the question or another "
        "tool call is needed."
    ),
}

FALLBACK_MAX_ITEMS = 10
FALLBACK_MAX_CHARS = 1500


class FollowUpPromptManager:
    """Builds the prompt strings used after a tool call returns."""

    def __init__(self, result_max_chars: int = 4000) -> None:
        self.result_max_chars = result_max_chars

    # ---------- System guidance ----------
    def system_messages(
        self,
        stage: str,
        original_question: str,
        enabled_servers: Optional[Sequence[str]] = None,
        include_tool_context: bool = True,
        has_error: bool = False
    ) -> List[Dict[str, str]]:
        """Single merged system message for the given follow-up stage."""
        if stage == "second":
            content = self.second_stage_prompt(original_question)
        else:
            content = self.first_stage_prompt(original_question, has_error, enabled_servers, include_tool_context)
        return [{"role": "system", "content": content}]

    def first_stage_prompt(
        self,
        original_question: str,
        has_error: bool = False,
        enabled_servers: Optional[Sequence[str]] = None,
        include_tool_context: bool = True
    ) -> str:
        """Guidance for the first turn after a tool result."""
        servers = list(enabled_servers or [])
        if has_error:
            tool_info = ""
            if include_tool_context and servers:
                tool_info = f"\n\nAvailable tools:\n{', '.join(servers)}\n\nCall format:\n{CALL_FORMAT}"
            return (
                "The tool call ran into a problem. Handle it based on the error:\n\n"
                "Strategy:\n"
                "1. Parameter error: adjust the arguments and call the tool again\n"
                "2. Connection error: retry the tool directly (the system reconnects automatically)\n"
                "3. Tool unavailable: try another available tool\n"
                "4. Not solvable with tools: answer from your own knowledge\n\n"
                f"User question: {original_question}{tool_info}"
            )
        tool_info = ""
        if include_tool_context and servers:
            tool_info = (
                "\n\nBackup options (only if the result is clearly wrong or irrelevant)\n"
                f"Available tools: {', '.join(servers)}"
            )
        return (
            "Give the user a complete answer based on the tool result.\n\n"
            "Core task (highest priority):\n"
            "1. The tool already returned its result; read and summarize it\n"
            "2. Output the answer directly, not tool-call instructions\n"
            "3. Be concise and do not repeat the raw tool output\n"
            "4. Unless information is clearly missing, make at most 1 more tool call; if uncertainty "
            "remains, state the limits and give your best answer\n\n"
            f"User question: {original_question}{tool_info}"
        )

    def second_stage_prompt(self, original_question: str) -> str:
        """Strict answer-now guidance used by the nudge turn."""
        return (
            "Final answer required.\n\n"
            "The tool results have been provided; you must give the final answer now.\n\n"
            "Your task:\n"
            "1. Read the tool results above\n"
            "2. Answer directly in at most 150 words\n"
            "3. Do not output any tool-call instructions\n"
            "4. Do not use planning language such as \"I need to...\" or \"Let me...\"\n\n"
            f"User question: {original_question}\n\n"
            "Answer now:"
        )

    @staticmethod
    def minimal_tool_context(enabled_servers: Sequence[str]) -> List[str]:
        """At most three server names plus the call format."""
        servers = list(enabled_servers)
        lines: List[str] = []
        if servers:
            listed = ", ".join(servers[:3])
            if len(servers) > 3:
                listed += f" (+{len(servers) - 3} more)"
            lines.append(f"Available tools: {listed}")
        lines.append(f"To call a tool: {CALL_FORMAT}")
        return lines

    # ---------- Result injection ----------
    def result_message(
        self,
        original_question: str,
        server: str,
        tool: str,
        payload: Any,
        result_class: ResultClass
    ) -> Dict[str, str]:
        """Synthetic user-role message carrying the literal result payload."""
        literal = stringify_payload(payload)[:self.result_max_chars]
        content = (
            f"Original user question: {original_question}\n\n"
            f"Tool call result: {server}.{tool} -> {literal}\n\n"
            f"{RESULT_CLASS_INSTRUCTIONS[result_class]}\n"
            f"If another tool is needed, use the format {CALL_FORMAT}"
        )
        return {"role": "user", "content": content}

    def nudge_message(self) -> Dict[str, str]:
        return {
            "role": "user",
            "content": (
                "Using all tool results above, answer the original question now. "
                f"If a tool is truly required, call it with exactly this format: {CALL_FORMAT}"
            ),
        }

    # ---------- Fallback ----------
    def fallback_answer(self, server: str, tool: str, payload: Any) -> str:
        """Readable summary of a raw tool result for a model that stayed silent."""
        body = _render_payload(payload)
        if not body:
            return f"The tool {server}.{tool} returned no usable content."
        return f"Result from {server}.{tool}:\n{body}"


def _render_payload(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload.strip()[:FALLBACK_MAX_CHARS]
    if isinstance(payload, dict):
        content = payload.get("content")
        if isinstance(content, list):
            texts = [
                str(item.get("text", "")).strip() if isinstance(item, dict) else str(item).strip()
                for item in content
            ]
            return "\n".join(t for t in texts if t)[:FALLBACK_MAX_CHARS]
        lines = [f"- {key}: {_short(value)}" for key, value in list(payload.items())[:FALLBACK_MAX_ITEMS]]
        return "\n".join(lines)
    if isinstance(payload, (list, tuple)):
        lines = [f"- {_short(item)}" for item in list(payload)[:FALLBACK_MAX_ITEMS]]
        if len(payload) > FALLBACK_MAX_ITEMS:
            lines.append(f"- ... {len(payload) - FALLBACK_MAX_ITEMS} more")
        return "\n".join(lines)
    return str(payload)[:FALLBACK_MAX_CHARS]


def _short(value: Any, limit: int = 200) -> str:
    if isinstance(value, dict):
        for key in ("title", "name", "text", "url"):
            if value.get(key):
                return str(value[key])[:limit]
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return text[:limit]
