from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..utils import now_ts_ns, read_jsonl, stable_hash, to_jsonable, write_jsonl_line

RUN_START = "RUN_START"
RUN_RESUME = "RUN_RESUME"
RUN_END = "RUN_END"
ATTEMPT_FAILED = "ATTEMPT_FAILED"
ATTEMPT_SUCCEEDED = "ATTEMPT_SUCCEEDED"
MODEL_ROUTED = "MODEL_ROUTED"
FILE_ERROR = "FILE_ERROR"
FILES_REMOVED = "FILES_REMOVED"


def _event_hash(entry: Dict[str, Any]) -> str:
    return stable_hash(
        {
            "ts": entry.get("ts"),
            "type": entry.get("type"),
            "payload": entry.get("payload"),
            "prev_hash": entry.get("prev_hash"),
        }
    )


class EventJournal:
    """Hash-chained JSONL journal of everything a model-set run did."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._last_hash = ""
        entries = read_jsonl(path)
        if entries:
            self._last_hash = entries[-1].get("hash", "")

    def append(self, event_type: str, payload: Dict[str, Any]) -> str:
        event: Dict[str, Any] = {
            "ts": now_ts_ns(),
            "type": event_type,
            "payload": to_jsonable(payload),
            "prev_hash": self._last_hash,
        }
        event["hash"] = _event_hash(event)
        write_jsonl_line(self.path, event)
        self._last_hash = event["hash"]
        return event["hash"]

    def events(self, event_type: str | None = None) -> List[Dict[str, Any]]:
        entries = read_jsonl(self.path)
        if event_type is None:
            return entries
        return [entry for entry in entries if entry.get("type") == event_type]

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        prev_hash = ""
        for idx, entry in enumerate(read_jsonl(path)):
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if _event_hash(entry) != entry.get("hash", ""):
                return False, f"hash mismatch at {idx}"
            prev_hash = entry["hash"]
        return True, "ok"
