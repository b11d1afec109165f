"""
Presence Log Parser
Reconciles the recent log tail into online sessions and player history
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Deque, Iterable, List, Optional

from bot.models.players import EVENT_JOIN, EVENT_LEAVE, LogEvent, to_iso, utc_now
from bot.parsers.components.connection_patterns import ConnectionPatternMatcher
from bot.parsers.components.player_history import PlayerHistory
from bot.parsers.components.player_lifecycle import OnlinePlayerStore
from bot.utils.exceptions import LogSourceException
from bot.utils.json_store import JsonStore, SnapshotWriter
from bot.utils.log_sources import LogSource, complete_lines

logger = logging.getLogger(__name__)

SCAN_STATE_FILE = 'presence-scan-state.json'
ANCHOR_SIZE = 16


def find_new_lines(anchor: List[str], lines: List[str]) -> List[str]:
    """
    Return the lines that come after the latest occurrence of `anchor`.

    When the anchor cannot be found the whole window is new (the log was
    rotated, or more than a full window of output arrived since last time).
    """
    if not anchor:
        return lines

    size = len(anchor)
    for end in range(len(lines), size - 1, -1):
        if lines[end - size:end] == anchor:
            return lines[end:]

    # A shorter window may still end inside the anchor (e.g. after a restart
    # with a smaller tail); match the longest anchor suffix at the window start
    for overlap in range(min(size, len(lines)) - 1, 0, -1):
        if lines[:overlap] == anchor[-overlap:]:
            return lines[overlap:]

    return lines


class PresenceLogParser:
    """
    The only writer of presence state.

    scan() polls a bounded tail of the log source; process_line() handles
    pushed lines. Both go through apply_event() so a join already known
    online never starts a second session.
    """

    def __init__(self, log_source: Optional[LogSource],
                 online_players: OnlinePlayerStore,
                 history: PlayerHistory,
                 store: JsonStore,
                 matcher: Optional[ConnectionPatternMatcher] = None,
                 scan_window: int = 500,
                 source_timeout: float = 10.0):
        self.log_source = log_source
        self.online_players = online_players
        self.history = history
        self.matcher = matcher or ConnectionPatternMatcher()
        self.scan_window = scan_window
        self.source_timeout = source_timeout

        self.anchor: Deque[str] = deque(maxlen=ANCHOR_SIZE)
        # Byte offset past the last processed line, for sources that support it
        self.position: Optional[int] = None
        self.state_writer = SnapshotWriter(store, SCAN_STATE_FILE)
        self.scan_lock = asyncio.Lock()
        self.last_scan_at: Optional[datetime] = None

    async def load_state(self):
        data = await self.state_writer.store.read_json(SCAN_STATE_FILE)
        if not isinstance(data, dict):
            return
        anchor = data.get('anchor')
        if isinstance(anchor, list) and all(isinstance(line, str) for line in anchor):
            self.anchor.extend(anchor[-ANCHOR_SIZE:])
        position = data.get('position')
        if isinstance(position, int) and not isinstance(position, bool) and position >= 0:
            self.position = position
        logger.info(f"Restored scan position ({len(self.anchor)} anchor lines, offset {self.position})")

    async def _read_source(self, read):
        """Await a source read, None when the source is unavailable"""
        try:
            return await asyncio.wait_for(read, timeout=self.source_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Log source '{self.log_source.name}' timed out after {self.source_timeout}s")
        except LogSourceException as e:
            logger.warning(f"Log source '{self.log_source.name}' unavailable: {e}")
        return None

    async def fetch_recent_lines(self) -> List[str]:
        """Complete recent log lines, or an empty list when the source is unavailable"""
        if self.log_source is None:
            return []

        content = await self._read_source(self.log_source.get_recent_lines(self.scan_window))
        if not content:
            return []
        return complete_lines(content).splitlines()

    async def fetch_new_lines(self) -> Optional[List[str]]:
        """Lines after the stored offset; None when the source is unavailable"""
        chunk = await self._read_source(self.log_source.read_from(self.position, self.scan_window))
        if chunk is None:
            return None

        lines = chunk.text.splitlines()
        if chunk.reset:
            logger.info(f"Log source '{self.log_source.name}' was rotated or truncated, "
                        f"reading the new log")
        if self.position is None or chunk.reset:
            # No usable offset; fall back to the anchor
            lines = find_new_lines(list(self.anchor), lines)
        self.position = chunk.position
        return lines

    async def scan(self) -> int:
        """Process whatever the log holds that was not seen before.

        Returns the number of events applied.
        """
        async with self.scan_lock:
            if self.log_source is not None and self.log_source.supports_offsets:
                previous = self.position
                new_lines = await self.fetch_new_lines()
                if new_lines is None:
                    return 0
                if not new_lines and self.position != previous:
                    self._persist_state()
            else:
                lines = await self.fetch_recent_lines()
                new_lines = find_new_lines(list(self.anchor), lines) if lines else []

            if not new_lines:
                logger.debug("Log unchanged since last scan")
                return 0

            applied = self.process_lines(new_lines)
            self.last_scan_at = utc_now()
            logger.debug(f"Scan processed {len(new_lines)} new lines, {applied} presence events, "
                         f"{len(self.online_players)} online")
            return applied

    def process_lines(self, lines: Iterable[str]) -> int:
        applied = 0
        for line in lines:
            if self.process_line(line, persist=False):
                applied += 1
        self._persist_state()
        return applied

    def process_line(self, line: str, persist: bool = True,
                     position: Optional[int] = None) -> Optional[LogEvent]:
        """Push-based ingestion of one line; same semantics as a scan step.

        `position` is the byte offset just past the line, when known.
        """
        self.anchor.append(line)
        if position is not None:
            self.position = position
        if persist:
            self._persist_state()

        event = self.matcher.classify(line)
        if event is None:
            return None
        return event if self.apply_event(event) else None

    def apply_event(self, event: LogEvent) -> bool:
        """Apply one classified event; returns True when state changed"""
        name = event.name

        if event.kind == EVENT_JOIN:
            if name in self.online_players:
                session = self.online_players.get(name)
                self.online_players.upsert_join(name, event)
                self.history.enrich(name, session.uuid)
                return False

            if not self.online_players.upsert_join(name, event):
                return False
            self.history.on_join(name, event.uuid)
            logger.info(f"🟢 Player joined: {name} ({len(self.online_players)} online)")
            return True

        if event.kind == EVENT_LEAVE:
            session = self.online_players.get(name)
            if session is None:
                return False

            played = self.history.on_leave(name, session.joined_at)
            self.online_players.remove_by_leave(name)
            logger.info(f"🔴 Player left: {name} after {played or 0}s ({len(self.online_players)} online)")
            return True

        return False

    def force_clear(self) -> int:
        """Server stopped or restarted: end every session, then empty the store"""
        sessions = self.online_players.list()
        for session in sessions:
            self.history.on_leave(session.name, session.joined_at)
        self.online_players.clear_all()
        logger.info(f"Cleared {len(sessions)} online players (server stop/restart)")
        return len(sessions)

    def remove_player(self, name: str) -> bool:
        """Drop one online session without crediting playtime"""
        removed = self.online_players.remove_by_leave(name)
        if removed:
            logger.info(f"Removed {name} from online players")
        return removed is not None

    def _persist_state(self):
        self.state_writer.schedule({
            'anchor': list(self.anchor),
            'position': self.position,
            'updatedAt': to_iso(utc_now()),
        })

    async def flush(self):
        await self.state_writer.flush()
