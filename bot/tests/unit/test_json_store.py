"""
Unit Tests for JSON Snapshot Persistence
"""

import asyncio
import json

import pytest
from unittest.mock import patch

from bot.utils.exceptions import PersistenceException
from bot.utils.json_store import JsonStore, SnapshotWriter


class TestJsonStore:
    """Whole-document reads and atomic writes"""

    def test_write_then_read(self, json_store, data_path):
        async def run():
            await json_store.write_json('doc.json', [{'name': 'Steve_99'}])
            return await json_store.read_json('doc.json')

        assert asyncio.run(run()) == [{'name': 'Steve_99'}]
        assert (data_path / 'doc.json').exists()
        assert not (data_path / '.doc.json.tmp').exists()

    def test_missing_file_reads_as_none(self, json_store):
        assert asyncio.run(json_store.read_json('absent.json')) is None

    def test_malformed_file_reads_as_none(self, json_store, data_path):
        data_path.mkdir(parents=True)
        (data_path / 'broken.json').write_text('{"name": ', encoding='utf-8')
        assert asyncio.run(json_store.read_json('broken.json')) is None

    def test_unserializable_value_raises_persistence_error(self, json_store):
        async def run():
            await json_store.write_json('doc.json', {'bad': object()})

        with pytest.raises(PersistenceException):
            asyncio.run(run())


class TestSnapshotWriter:
    """Serialized, latest-wins background writes"""

    def test_latest_snapshot_wins(self, json_store, data_path):
        writer = SnapshotWriter(json_store, 'state.json')

        async def run():
            for i in range(20):
                writer.schedule({'version': i})
            await writer.flush()

        asyncio.run(run())
        assert json.loads((data_path / 'state.json').read_text()) == {'version': 19}
        assert writer.written_version == writer.version == 20

    def test_writes_never_overlap(self, data_path):
        store = JsonStore(data_path)
        writer = SnapshotWriter(store, 'state.json')
        active = []
        written = []

        async def slow_write(name, value):
            active.append(value)
            assert len(active) == 1
            await asyncio.sleep(0.01)
            written.append(value)
            active.remove(value)

        async def run():
            with patch.object(store, 'write_json', side_effect=slow_write):
                writer.schedule(1)
                await asyncio.sleep(0)
                writer.schedule(2)
                writer.schedule(3)
                await writer.flush()

        asyncio.run(run())
        assert written == [1, 3]

    def test_failed_write_is_retried_on_next_schedule(self, json_store, data_path):
        writer = SnapshotWriter(json_store, 'state.json')
        failing = patch.object(json_store, 'write_json', side_effect=PersistenceException("disk full"))

        async def run():
            with failing:
                writer.schedule({'v': 1})
                await writer.flush()
            assert writer.written_version == 0
            writer.schedule({'v': 2})
            await writer.flush()

        asyncio.run(run())
        assert json.loads((data_path / 'state.json').read_text()) == {'v': 2}

    def test_schedule_without_running_loop_is_written_by_flush(self, json_store, data_path):
        writer = SnapshotWriter(json_store, 'state.json')
        writer.schedule(['offline'])
        asyncio.run(writer.flush())
        assert json.loads((data_path / 'state.json').read_text()) == ['offline']
