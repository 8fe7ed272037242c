"""
Recursion counter - bounds the tool-result follow-up loop per conversation.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

DEFAULT_MAX_DEPTH = 2
MIN_DEPTH = 2
MAX_DEPTH = 15
INFINITE = "infinite"


def parse_max_depth(value: Any, default: Optional[int] = DEFAULT_MAX_DEPTH) -> Optional[int]:
    """Normalize a configured depth; None means unbounded, invalid values fall back."""
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text == INFINITE:
            return None
        try:
            value = int(text)
        except ValueError:
            return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    depth = int(value)
    if MIN_DEPTH <= depth <= MAX_DEPTH:
        return depth
    return default


class RecursionCounter:
    """Follow-up turns issued per conversation since the last visible answer."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._counts: Dict[str, int] = {}
        self._logger = logger or logging.getLogger(__name__)

    def get(self, conversation_id: str) -> int:
        return self._counts.get(conversation_id, 0)

    def try_advance(self, conversation_id: str, max_depth: Optional[int]) -> bool:
        """
        Count one more follow-up turn.

        Returns False, and resets to zero, once the maximum is reached so the
        count never exceeds ``max_depth``. ``None`` means unbounded.
        """
        current = self.get(conversation_id)
        if max_depth is not None and current >= max_depth:
            self._logger.debug(f"Recursion limit {max_depth} reached for {conversation_id}")
            self.reset(conversation_id)
            return False
        self._counts[conversation_id] = current + 1
        return True

    def reset(self, conversation_id: str) -> None:
        self._counts.pop(conversation_id, None)
