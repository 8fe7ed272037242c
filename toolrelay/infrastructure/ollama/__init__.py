"""Ollama infrastructure package."""

from .transport import OllamaModelTransport

__all__ = ['OllamaModelTransport']
