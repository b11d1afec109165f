"""
Unit Tests for the Online Player Store
"""

import asyncio
import json

from bot.models.players import EVENT_JOIN, LogEvent, OnlineSession, to_iso
from bot.parsers.components.player_lifecycle import ONLINE_PLAYERS_FILE, OnlinePlayerStore


class TestOnlinePlayerStore:
    """Session creation, merge and removal"""

    def test_first_join_creates_session(self, json_store, clock):
        store = OnlinePlayerStore(json_store, clock=clock)
        assert store.upsert_join("Steve_99") is True
        session = store.get("Steve_99")
        assert session.joined_at == clock.now
        assert len(store) == 1

    def test_repeat_join_merges_without_restarting_clock(self, json_store, clock):
        store = OnlinePlayerStore(json_store, clock=clock)
        store.upsert_join("Steve_99", LogEvent(EVENT_JOIN, "Steve_99", ip="10.0.0.7"))
        joined_at = clock.now
        clock.advance(60)

        created = store.upsert_join("Steve_99", LogEvent(EVENT_JOIN, "Steve_99", uuid="abc", ip="10.0.0.8"))

        session = store.get("Steve_99")
        assert created is False
        assert session.joined_at == joined_at
        assert session.last_activity == clock.now
        assert session.uuid == "abc"
        assert session.ip == "10.0.0.7"  # known attributes are never replaced

    def test_invalid_names_are_ignored(self, json_store, clock):
        store = OnlinePlayerStore(json_store, clock=clock)
        assert store.upsert_join("client") is False
        assert store.upsert_join("Al") is False
        assert store.remove_by_leave("client") is None
        assert len(store) == 0

    def test_remove_by_leave(self, json_store, clock):
        store = OnlinePlayerStore(json_store, clock=clock)
        store.upsert_join("Steve_99")
        removed = store.remove_by_leave("Steve_99")
        assert removed.name == "Steve_99"
        assert "Steve_99" not in store
        assert store.remove_by_leave("Steve_99") is None

    def test_clear_all_returns_cleared_sessions(self, json_store, clock):
        store = OnlinePlayerStore(json_store, clock=clock)
        store.upsert_join("Steve_99")
        store.upsert_join("Alex")
        cleared = store.clear_all()
        assert sorted(s.name for s in cleared) == ["Alex", "Steve_99"]
        assert store.list() == []


class TestOnlinePersistence:
    """online-players.json snapshot and reload"""

    def test_round_trip_preserves_names_and_join_time(self, json_store, clock, data_path):
        clock.now = clock.now.replace(microsecond=250000)

        async def run():
            store = OnlinePlayerStore(json_store, clock=clock)
            store.upsert_join("Steve_99", LogEvent(EVENT_JOIN, "Steve_99", world="default"))
            store.upsert_join("Alex")
            await store.flush()

            restored = OnlinePlayerStore(json_store, clock=clock)
            await restored.load()
            return restored

        restored = asyncio.run(run())
        assert sorted(restored.names()) == ["Alex", "Steve_99"]
        assert restored.get("Steve_99").joined_at == clock.now
        assert restored.get("Steve_99").world == "default"

        data = json.loads((data_path / ONLINE_PLAYERS_FILE).read_text())
        assert data[0]['joinedAt'] == to_iso(clock.now)
        assert data[0]['joinedAt'].endswith('.250Z')

    def test_load_skips_invalid_entries(self, json_store, data_path, clock):
        data_path.mkdir(parents=True)
        (data_path / ONLINE_PLAYERS_FILE).write_text(json.dumps([
            {'name': 'Steve_99', 'joinedAt': '2024-05-01T11:00:00.000Z'},
            {'name': 'client', 'joinedAt': '2024-05-01T11:00:00.000Z'},
            {'name': 'Alex'},
            {'name': 'Bob_1', 'joinedAt': 'yesterday'},
            'garbage',
        ]))

        store = OnlinePlayerStore(json_store, clock=clock)
        asyncio.run(store.load())
        assert store.names() == ["Steve_99"]

    def test_malformed_file_starts_empty(self, json_store, data_path, clock):
        data_path.mkdir(parents=True)
        (data_path / ONLINE_PLAYERS_FILE).write_text('[{"name": "Steve_99",')

        store = OnlinePlayerStore(json_store, clock=clock)
        asyncio.run(store.load())
        assert len(store) == 0

    def test_session_dict_omits_unknown_attributes(self, clock):
        session = OnlineSession(name="Steve_99", joined_at=clock.now)
        assert session.to_dict() == {'name': 'Steve_99', 'joinedAt': '2024-05-01T12:00:00.000Z'}
