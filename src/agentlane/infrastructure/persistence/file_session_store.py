"""
File-Based Session Store
========================

Persists session histories as JSON snapshots, one file per session:
``<sessions_dir>/<safe_session_id>.json``.

Writes go to a temp file first and are moved into place, so a crash never
leaves a half-written snapshot.
"""

import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import structlog

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileSessionStore:
    """Async JSON snapshot store for session histories."""

    def __init__(self, sessions_dir: str | Path, max_messages: int = 200):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.max_messages = max_messages
        self.logger = logger.bind(component="file_session_store")

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{_UNSAFE_CHARS.sub('_', session_id)}.json"

    async def save(self, session_id: str, messages: list[dict[str, Any]]) -> bool:
        """
        Save a session history snapshot.

        The leading system message is kept; only the most recent
        ``max_messages`` other messages are written.

        Returns:
            True on success, False if the write failed.
        """
        system, body = messages[:1], messages[1:]
        snapshot = {
            "session_id": session_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "messages": system + body[-self.max_messages:],
        }
        path = self._path(session_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(snapshot, ensure_ascii=False, default=str))
            os.replace(tmp_path, path)
        except OSError as e:
            self.logger.error("session_save_failed", session_id=session_id, error=str(e))
            return False

        self.logger.debug("session_saved", session_id=session_id, messages=len(snapshot["messages"]))
        return True

    async def load(self, session_id: str) -> list[dict[str, Any]] | None:
        """Load a snapshot. Returns None if missing or unreadable."""
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning("session_load_failed", session_id=session_id, error=str(e))
            return None

        messages = data.get("messages")
        if not isinstance(messages, list):
            return None
        return messages

    async def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_sessions(self) -> list[str]:
        return sorted(p.stem for p in self.sessions_dir.glob("*.json"))
