"""
Player History Aggregator
Lifetime per-player records and the analytics derived from them
"""

import logging
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from bot.models.players import HistoryEntry, utc_now
from bot.utils.input_validator import is_valid_player_name
from bot.utils.json_store import JsonStore, SnapshotWriter

logger = logging.getLogger(__name__)

PLAYER_HISTORY_FILE = 'player-history.json'
RECENT_WINDOW = timedelta(days=7)


def _round_half_up(value: float, places: int = 0) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class PlayerHistory:
    """name -> HistoryEntry, plus statistics over all entries"""

    def __init__(self, store: JsonStore, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self.entries_by_name: Dict[str, HistoryEntry] = {}
        self.writer = SnapshotWriter(store, PLAYER_HISTORY_FILE)

        # Peak concurrency for the current UTC day
        self.peak_online_today = 0
        self.peak_date: date = self.clock().date()

    async def load(self):
        data = await self.writer.store.read_json(PLAYER_HISTORY_FILE)
        if not isinstance(data, list):
            if data is not None:
                logger.warning(f"{PLAYER_HISTORY_FILE} is not a list, starting with empty history")
            return

        for raw in data:
            if not isinstance(raw, dict) or not is_valid_player_name(raw.get('name')):
                continue
            try:
                entry = HistoryEntry.from_dict(raw)
            except (KeyError, ValueError, TypeError) as e:
                logger.debug(f"Skipping unreadable history entry {raw!r}: {e}")
                continue
            self.entries_by_name[entry.name] = entry

        logger.info(f"Loaded history for {len(self.entries_by_name)} players")

    def on_join(self, name: str, uuid: Optional[str] = None) -> HistoryEntry:
        """Record the start of a new session"""
        now = self.clock()
        entry = self.entries_by_name.get(name)

        if entry:
            entry.last_seen = max(entry.last_seen, now)
            entry.session_count += 1
            if uuid and not entry.uuid:
                entry.uuid = uuid
        else:
            entry = HistoryEntry(
                name=name,
                uuid=uuid,
                first_seen=now,
                last_seen=now,
                play_time=0,
                session_count=1,
            )
            self.entries_by_name[name] = entry

        self._persist()
        return entry

    def enrich(self, name: str, uuid: Optional[str]):
        entry = self.entries_by_name.get(name)
        if entry and uuid and not entry.uuid:
            entry.uuid = uuid
            self._persist()

    def on_leave(self, name: str, session_joined_at: datetime) -> Optional[int]:
        """Add the finished session to playtime; returns the seconds added"""
        entry = self.entries_by_name.get(name)
        if not entry:
            logger.debug(f"Leave for {name} without a history entry, ignoring")
            return None

        now = self.clock()
        elapsed = max(0, int((now - session_joined_at).total_seconds()))
        entry.play_time += elapsed
        entry.last_seen = max(entry.last_seen, now)
        self._persist()
        return elapsed

    def get(self, name: str) -> Optional[HistoryEntry]:
        return self.entries_by_name.get(name)

    def entries(self) -> List[HistoryEntry]:
        """All entries, most recently seen first"""
        return sorted(self.entries_by_name.values(), key=lambda e: e.last_seen, reverse=True)

    def record_online_count(self, count: int):
        """Sample the online count into today's running maximum (UTC days)"""
        today = self.clock().date()
        if today != self.peak_date:
            self.peak_online_today = 0
            self.peak_date = today
        if count > self.peak_online_today:
            self.peak_online_today = count

    def statistics(self, online_count: Optional[int] = None, top_limit: int = 10) -> Dict[str, Any]:
        # Also rolls the peak over when the day changed
        self.record_online_count(online_count or 0)

        now = self.clock()
        cutoff = now - RECENT_WINDOW
        players = list(self.entries_by_name.values())
        total_players = len(players)
        total_playtime = sum(p.play_time for p in players)
        total_sessions = sum(p.session_count for p in players)

        top_players = sorted(players, key=lambda p: (-p.play_time, p.name))[:top_limit]

        return {
            'total_players': total_players,
            'total_playtime': total_playtime,
            'average_playtime': int(_round_half_up(total_playtime / total_players)) if total_players else 0,
            'average_sessions_per_player': _round_half_up(total_sessions / total_players, 1) if total_players else 0,
            'top_players': [
                {'name': p.name, 'play_time': p.play_time, 'sessions': p.session_count}
                for p in top_players
            ],
            'new_players_last_7_days': sum(1 for p in players if p.first_seen >= cutoff),
            'active_players_last_7_days': sum(1 for p in players if p.last_seen >= cutoff),
            'peak_online_today': self.peak_online_today,
        }

    def daily_activity(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Distinct players per UTC day for the last `days` days, oldest first.

        Only last_seen is known per player, so a player counts on the single
        day they were last seen and each counts as one session. This is an
        approximation, not real per-day session accounting.
        """
        today = self.clock().date()
        last_seen_days: Dict[date, int] = {}
        for entry in self.entries_by_name.values():
            day = entry.last_seen.date()
            last_seen_days[day] = last_seen_days.get(day, 0) + 1

        result = []
        for offset in range(max(0, days) - 1, -1, -1):
            day = today - timedelta(days=offset)
            unique_players = last_seen_days.get(day, 0)
            result.append({
                'date': day.isoformat(),
                'unique_players': unique_players,
                'total_sessions': unique_players,
            })
        return result

    def __contains__(self, name: str) -> bool:
        return name in self.entries_by_name

    def __len__(self) -> int:
        return len(self.entries_by_name)

    def _persist(self):
        self.writer.schedule([entry.to_dict() for entry in self.entries_by_name.values()])

    async def flush(self):
        await self.writer.flush()
