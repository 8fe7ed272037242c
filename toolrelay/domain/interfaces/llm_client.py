"""
Model transport protocol interface.
Defines the contract for vendor streaming adapters.
"""

from __future__ import annotations
from typing import Protocol, List, Dict, Any, AsyncIterator

from ..models.events import StreamDelta


class ModelTransport(Protocol):
    """Protocol for streaming chat model implementations."""

    @property
    def model_name(self) -> str:
        """Model identifier, used to pick a thinking strategy."""
        ...

    def stream_chat(self, messages: List[Dict[str, Any]]) -> AsyncIterator[StreamDelta]:
        """Stream (thinking, content, done) increments for the given history."""
        ...
