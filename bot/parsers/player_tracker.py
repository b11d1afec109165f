"""
Player Tracker
Read API over online presence and player history
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from bot.models.players import HistoryEntry, to_iso, utc_now
from bot.parsers.components.connection_patterns import ConnectionPatternMatcher
from bot.parsers.components.player_history import PlayerHistory
from bot.parsers.components.player_lifecycle import OnlinePlayerStore
from bot.parsers.presence_log_parser import PresenceLogParser
from bot.utils.json_store import JsonStore
from bot.utils.log_sources import LogSource

logger = logging.getLogger(__name__)


def format_duration(seconds: int) -> str:
    """'2h 5m' for sessions of an hour or more, otherwise '5m'"""
    hours, remainder = divmod(max(0, int(seconds)), 3600)
    minutes = remainder // 60
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class PlayerTracker:
    """
    One per process. Owns both stores and the parser that mutates them;
    everything public here only reads, apart from the two operator actions
    which are forwarded to the parser.
    """

    def __init__(self, log_source: Optional[LogSource], data_path: Path,
                 clock: Callable[[], datetime] = utc_now,
                 scan_window: int = 500,
                 source_timeout: float = 10.0,
                 top_players_limit: int = 10,
                 scan_on_query: bool = True,
                 matcher: Optional[ConnectionPatternMatcher] = None):
        self.clock = clock
        self.top_players_limit = top_players_limit
        # Off when lines are pushed through process_line instead of polled
        self.scan_on_query = scan_on_query
        self.store = JsonStore(data_path)
        self.log_source = log_source

        self.online_players = OnlinePlayerStore(self.store, clock=clock)
        self.history = PlayerHistory(self.store, clock=clock)
        self.parser = PresenceLogParser(
            log_source,
            self.online_players,
            self.history,
            self.store,
            matcher=matcher,
            scan_window=scan_window,
            source_timeout=source_timeout,
        )
        self.initialized = False

    async def initialize(self):
        """Restore persisted state, then reconcile with the current log tail"""
        await self.online_players.load()
        await self.history.load()
        await self.parser.load_state()
        applied = await self.parser.scan()
        self.initialized = True
        logger.info(f"Player tracking initialized: {len(self.online_players)} online, "
                    f"{len(self.history)} known players, {applied} events from initial scan")

    async def scan(self) -> int:
        return await self.parser.scan()

    async def _refresh(self):
        if self.scan_on_query:
            await self.parser.scan()

    async def list_online(self) -> List[Dict[str, Any]]:
        await self._refresh()
        now = self.clock()
        players = []
        for session in self.online_players.list():
            seconds = max(0, int((now - session.joined_at).total_seconds()))
            players.append({
                'name': session.name,
                'joined_at': to_iso(session.joined_at),
                'session_duration_seconds': seconds,
                'session_duration': format_duration(seconds),
            })
        return players

    async def online_count(self) -> int:
        await self._refresh()
        count = len(self.online_players)
        self.history.record_online_count(count)
        return count

    async def list_offline(self) -> List[HistoryEntry]:
        await self._refresh()
        return [entry for entry in self.history.entries() if entry.name not in self.online_players]

    def list_history(self) -> List[HistoryEntry]:
        return self.history.entries()

    def statistics(self) -> Dict[str, Any]:
        return self.history.statistics(
            online_count=len(self.online_players),
            top_limit=self.top_players_limit,
        )

    def daily_activity(self, days: int = 7) -> List[Dict[str, Any]]:
        return self.history.daily_activity(days)

    async def get_player(self, name: str) -> Optional[Dict[str, Any]]:
        """Combined online/history view of one player, None if never seen"""
        await self._refresh()
        entry = self.history.get(name)
        session = self.online_players.get(name)
        if entry is None and session is None:
            return None

        player: Dict[str, Any] = {'name': name, 'online': session is not None}
        if session:
            player['session'] = session.to_dict()
        if entry:
            player['history'] = entry.to_dict()
        return player

    def force_clear_online(self) -> int:
        return self.parser.force_clear()

    def remove_player(self, name: str) -> bool:
        return self.parser.remove_player(name)

    async def flush(self):
        await self.online_players.flush()
        await self.history.flush()
        await self.parser.flush()

    async def shutdown(self):
        """Write out pending snapshots and release the log source"""
        await self.flush()
        if self.log_source is not None:
            await self.log_source.close()
        logger.info("Player tracker shut down")
