"""
Player Lifecycle Manager
Authoritative in-memory set of online sessions with a persisted snapshot
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from bot.models.players import LogEvent, OnlineSession, utc_now
from bot.utils.input_validator import is_valid_player_name
from bot.utils.json_store import JsonStore, SnapshotWriter

logger = logging.getLogger(__name__)

ONLINE_PLAYERS_FILE = 'online-players.json'


class OnlinePlayerStore:
    """Tracks which players are online right now"""

    def __init__(self, store: JsonStore, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self.sessions: Dict[str, OnlineSession] = {}
        self.writer = SnapshotWriter(store, ONLINE_PLAYERS_FILE)

    async def load(self):
        """Restore sessions persisted by a previous process"""
        data = await self.writer.store.read_json(ONLINE_PLAYERS_FILE)
        if not isinstance(data, list):
            if data is not None:
                logger.warning(f"{ONLINE_PLAYERS_FILE} is not a list, starting with no online players")
            return

        for entry in data:
            if not isinstance(entry, dict) or not is_valid_player_name(entry.get('name')):
                continue
            try:
                session = OnlineSession.from_dict(entry)
            except (KeyError, ValueError, TypeError) as e:
                logger.debug(f"Skipping unreadable online player entry {entry!r}: {e}")
                continue
            self.sessions[session.name] = session

        logger.info(f"Loaded {len(self.sessions)} online players from persistent storage")

    def upsert_join(self, name: str, event: Optional[LogEvent] = None) -> bool:
        """Start a session, or merge attributes into the existing one.

        Returns True only when a new session was created.
        """
        if not is_valid_player_name(name):
            return False

        enrichment = event.enrichment if event else {}
        now = self.clock()
        existing = self.sessions.get(name)

        if existing:
            existing.merge(enrichment)
            existing.last_activity = now
            self._persist()
            return False

        self.sessions[name] = OnlineSession(
            name=name,
            joined_at=now,
            last_activity=now,
            **enrichment
        )
        self._persist()
        return True

    def remove_by_leave(self, name: str) -> Optional[OnlineSession]:
        if not is_valid_player_name(name):
            return None

        session = self.sessions.pop(name, None)
        if session:
            self._persist()
        return session

    def clear_all(self) -> List[OnlineSession]:
        """Drop every session; the caller reports them as ended first"""
        cleared = list(self.sessions.values())
        self.sessions.clear()
        self._persist()
        return cleared

    def get(self, name: str) -> Optional[OnlineSession]:
        return self.sessions.get(name)

    def list(self) -> List[OnlineSession]:
        return list(self.sessions.values())

    def names(self) -> List[str]:
        return list(self.sessions)

    def __contains__(self, name: str) -> bool:
        return name in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    def _persist(self):
        self.writer.schedule([session.to_dict() for session in self.sessions.values()])

    async def flush(self):
        await self.writer.flush()
