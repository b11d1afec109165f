"""
Test Configuration
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot.parsers.player_tracker import PlayerTracker
from bot.utils.exceptions import LogSourceException
from bot.utils.json_store import JsonStore
from bot.utils.log_sources import LogSource, tail_text


class FakeClock:
    """Settable UTC clock"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs):
        self.now = self.now + timedelta(seconds=seconds, **kwargs)


class MemoryLogSource(LogSource):
    """Log source backed by a list of lines; fail=True simulates an outage"""

    name = 'memory'

    def __init__(self, lines=None):
        self.lines = list(lines or [])
        # Output after the last newline, still being written
        self.partial = ''
        self.fail = False
        self.calls = 0
        self.closed = False

    def append(self, *lines):
        self.lines.extend(lines)

    def write(self, text: str):
        """Raw output that may stop mid-line"""
        *complete, self.partial = (self.partial + text).split('\n')
        self.lines.extend(complete)

    async def get_recent_lines(self, max_lines: int) -> str:
        self.calls += 1
        if self.fail:
            raise LogSourceException("source unavailable")
        return tail_text('\n'.join(self.lines), max_lines) + self.partial

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def log_source():
    return MemoryLogSource()


@pytest.fixture
def data_path(tmp_path):
    return tmp_path / 'data'


@pytest.fixture
def json_store(data_path):
    return JsonStore(data_path)


@pytest.fixture
def make_tracker(log_source, data_path, clock):
    """Factory so a test can build a second tracker over the same data dir"""

    def _make(source=None, **kwargs):
        return PlayerTracker(source or log_source, data_path, clock=clock, **kwargs)

    return _make


@pytest.fixture
def mock_bot():
    """Mock bot instance for testing"""
    bot = MagicMock()
    bot.player_tracker = MagicMock()
    bot.player_tracker.list_online = AsyncMock(return_value=[])
    return bot


@pytest.fixture
def mock_ctx():
    """Mock Discord context for testing"""
    ctx = AsyncMock()
    ctx.guild_id = 12345
    ctx.respond = AsyncMock()
    ctx.followup.send = AsyncMock()
    return ctx
