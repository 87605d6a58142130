"""JSON-file session persistence: one file per session id."""

import logging
import re
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from tech_referee.models import Session

logger = logging.getLogger(__name__)

_SESSION_ADAPTER = TypeAdapter(Session)
_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionStore:
    """Sessions live as <root>/<id>.json and are removed only by delete()."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._root / f"{session_id}.json"

    def save(self, session: Session) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._path(session.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_bytes(_SESSION_ADAPTER.dump_json(session, indent=2))
        tmp.replace(path)
        logger.debug("Saved session %s (%s)", session.id, session.status.value)
        return path

    def load(self, session_id: str) -> Session | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return _SESSION_ADAPTER.validate_json(path.read_bytes())

    def list_sessions(self) -> list[Session]:
        """All readable sessions, newest first. Unreadable files are skipped with a warning."""
        if not self._root.exists():
            return []
        sessions = []
        for path in self._root.glob("*.json"):
            try:
                sessions.append(_SESSION_ADAPTER.validate_json(path.read_bytes()))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable session file %s: %s", path.name, exc)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted session %s", session_id)
        return True
