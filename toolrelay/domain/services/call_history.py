"""
Call history - two-tier dedupe/replay cache over recent tool executions.
"""

from __future__ import annotations
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..models.tool import CallHistoryRecord, fingerprint_args

DUPLICATE_WINDOW_S = 60.0
REUSE_WINDOW_S = 600.0
MAX_ENTRIES = 100
EXPIRE_S = 3600.0
RECENT_STATS_WINDOW_S = 300.0

_MISSING = object()


class CallHistory:
    """
    Remembers every execution attempt keyed by ``server:tool:fingerprint``.

    ``is_duplicate`` answers "did this exact call succeed moments ago";
    ``recent_result`` answers "can a stored success be replayed". The two
    windows are independent.
    """

    def __init__(
        self,
        duplicate_window_s: float = DUPLICATE_WINDOW_S,
        reuse_window_s: float = REUSE_WINDOW_S,
        max_entries: int = MAX_ENTRIES,
        expire_s: float = EXPIRE_S,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None
    ):
        self.duplicate_window_s = duplicate_window_s
        self.reuse_window_s = reuse_window_s
        self.max_entries = max_entries
        self.expire_s = expire_s
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._entries: Dict[str, CallHistoryRecord] = {}

    @staticmethod
    def key(server: str, tool: str, args: Optional[Dict[str, Any]]) -> str:
        return f"{server}:{tool}:{fingerprint_args(args)}"

    def __len__(self) -> int:
        return len(self._entries)

    def is_duplicate(self, server: str, tool: str, args: Optional[Dict[str, Any]]) -> bool:
        """True if the identical call succeeded inside the duplicate window."""
        record = self._entries.get(self.key(server, tool, args))
        if record is None or record.last_success_at is None:
            return False
        return (self._clock() - record.last_success_at) < self.duplicate_window_s

    def recent_result(self, server: str, tool: str, args: Optional[Dict[str, Any]], default: Any = None) -> Any:
        """Stored successful result inside the reuse window, else ``default``."""
        record = self._entries.get(self.key(server, tool, args))
        if record is None or record.last_success_at is None or record.result is None:
            return default
        if (self._clock() - record.last_success_at) >= self.reuse_window_s:
            return default
        return record.result

    def has_recent_result(self, server: str, tool: str, args: Optional[Dict[str, Any]]) -> bool:
        return self.recent_result(server, tool, args, default=_MISSING) is not _MISSING

    def record(
        self,
        server: str,
        tool: str,
        args: Optional[Dict[str, Any]],
        success: bool,
        result: Any = None
    ) -> CallHistoryRecord:
        """Store an attempt; a failure keeps the last stored success for replay."""
        now = self._clock()
        key = self.key(server, tool, args)
        previous = self._entries.pop(key, None)
        record = CallHistoryRecord(
            server=server,
            tool=tool,
            args_fingerprint=fingerprint_args(args),
            timestamp=now,
            success=success,
            result=result if success else (previous.result if previous else None),
            last_success_at=now if success else (previous.last_success_at if previous else None),
        )
        # Re-inserted so dict order stays oldest-first
        self._entries[key] = record
        self._evict(now)
        return record

    def _evict(self, now: float) -> None:
        expired = [k for k, r in self._entries.items() if (now - r.timestamp) > self.expire_s]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    def stats(self) -> Dict[str, Any]:
        """Totals over the history plus activity in the last five minutes."""
        now = self._clock()
        records = list(self._entries.values())
        total = len(records)
        recent = sum(1 for r in records if (now - r.timestamp) < RECENT_STATS_WINDOW_S)
        successes = sum(1 for r in records if r.success)
        return {
            "total_calls": total,
            "recent_calls": recent,
            "success_rate": (successes / total) if total else 0.0,
        }

    def clear(self) -> None:
        self._entries.clear()

    # ---------- Best-effort persistence ----------
    def save(self, path: Union[str, Path]) -> bool:
        """Write the history as JSON; failures are logged, never raised."""
        try:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            data = {key: record.to_dict() for key, record in self._entries.items()}
            target.write_text(json.dumps(data, ensure_ascii=False, default=str), encoding="utf-8")
            return True
        except (OSError, TypeError, ValueError) as e:
            self._logger.warning(f"Failed to persist call history: {e}")
            return False

    def load(self, path: Union[str, Path]) -> int:
        """Load a saved history, dropping expired records; returns records kept."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            self._logger.warning(f"Ignoring unreadable call history {path}: {e}")
            return 0
        if not isinstance(raw, dict):
            return 0
        loaded: Dict[str, CallHistoryRecord] = {}
        for key, data in raw.items():
            try:
                loaded[key] = CallHistoryRecord.from_dict(data)
            except (KeyError, TypeError, ValueError):
                continue
        self._entries = dict(sorted(loaded.items(), key=lambda item: item[1].timestamp))
        self._evict(self._clock())
        return len(self._entries)
