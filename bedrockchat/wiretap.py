"""
Wiretap — structured JSONL record of what went over the line.

Separate from the debug log: one line per message sent to or received from
a model, so a conversation can be replayed or grepped later.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_CONTENT = 2000


class WireLog:
    """
    Structured JSONL logger for the wire.

    Format:
        {"ts": "...", "dir": "inbound|outbound", "role": "...",
         "model": "...", "conv": "...", "len": 123, "content": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None
        self._lock = threading.Lock()

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1)  # line-buffered

    def log(
        self,
        direction: str,  # "inbound" (user->model) or "outbound" (model->user)
        role: str,
        content: str,
        model: str = "",
        conversation_id: str = "",
        is_error: bool = False,
    ):
        """Write a wire log entry."""
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "model": model,
            "conv": conversation_id[:16] if conversation_id else "",
            "len": len(content),
        }
        if is_error:
            entry["error"] = True

        # Keep short content whole, elide the middle of long content
        if len(content) <= MAX_CONTENT:
            entry["content"] = content
        else:
            entry["content"] = (
                content[:1000]
                + f"\n\n[... {len(content) - MAX_CONTENT} chars truncated ...]\n\n"
                + content[-1000:]
            )

        with self._lock:
            self._ensure_open()
            self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        with self._lock:
            if self._file:
                self._file.close()
                self._file = None
