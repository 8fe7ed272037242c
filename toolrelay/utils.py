"""
Utility functions for toolrelay.
"""

import logging
import sys
from typing import List

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", fmt: str = DEFAULT_LOG_FORMAT) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )

    # Reduce noise from third-party libraries unless debugging
    if level.upper() != "DEBUG":
        for name in ("httpx", "ollama", "urllib3", "requests"):
            logging.getLogger(name).setLevel(logging.WARNING)


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text with ellipsis if too long."""
    if len(text) <= max_length:
        return text
    return text[:max_length-3] + "..."


def split_chunks(text: str, size: int = 8) -> List[str]:
    """Cut text into fixed-size pieces, simulating a token stream."""
    size = max(1, size)
    return [text[i:i + size] for i in range(0, len(text), size)]
