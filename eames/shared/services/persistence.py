"""Session persistence: save and resume SessionState as JSON.

Storage layout:
    ~/.eames/sessions/{session_id}.json
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from eames.engine.session import SessionState
from eames.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


def default_sessions_dir() -> Path:
    return Path.home() / ".eames" / "sessions"


class SessionPersistence:
    """Save and load sessions to JSON files."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._dir = Path(base_dir) if base_dir is not None else default_sessions_dir()

    @property
    def directory(self) -> Path:
        return self._dir

    def save(self, session: SessionState) -> Path:
        data = session.to_dict()
        data["version"] = FORMAT_VERSION
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        path = self._dir / f"{session.session_id}.json"
        atomic_write_json(path, data)
        logger.info("Session saved to %s", path)
        return path

    def load(self, session_id: str) -> SessionState:
        """Load a session by id. Raises FileNotFoundError if absent."""
        path = self._dir / f"{session_id}.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        session = SessionState.from_dict(data)
        logger.debug(
            "Loaded session %s (%d history entries)",
            session.session_id, len(session.history),
        )
        return session

    def list_sessions_by_mtime(self) -> list[str]:
        """Saved session ids, most recently modified first."""
        if not self._dir.exists():
            return []
        paths = list(self._dir.glob("*.json"))
        paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in paths]

    def latest(self) -> SessionState | None:
        """Load the most recently saved session, if any."""
        sessions = self.list_sessions_by_mtime()
        if not sessions:
            return None
        try:
            return self.load(sessions[0])
        except (FileNotFoundError, json.JSONDecodeError, KeyError, ValueError) as exc:
            logger.warning("Failed to resume session '%s': %s", sessions[0], exc)
            return None

    def delete(self, session_id: str) -> bool:
        path = self._dir / f"{session_id}.json"
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted session %s", session_id)
        return True
