"""
toolrelay - recovers tool calls from streamed model output and drives them to an answer.
"""

__version__ = "1.0.0"

__all__ = [
    "__version__"
]
