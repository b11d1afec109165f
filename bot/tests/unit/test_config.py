"""
Unit Tests for Tracker Configuration
"""

from pathlib import Path

import pytest

from bot.config import TrackerConfig, build_log_source
from bot.utils.exceptions import ConfigurationException
from bot.utils.log_sources import DockerLogSource, FileLogSource, SFTPLogSource


class TestTrackerConfig:
    """Environment parsing"""

    def test_defaults(self):
        config = TrackerConfig.from_env({'LOG_FILE': '/srv/game/server.log'})
        assert config.data_path == Path('./data')
        assert config.log_source == 'file'
        assert config.scan_window_lines == 500
        assert config.scan_interval_seconds == 30
        assert config.log_source_timeout == 10
        assert config.top_players_limit == 10
        assert config.follow_log is False

    def test_invalid_integers_fall_back_to_defaults(self):
        config = TrackerConfig.from_env({
            'LOG_FILE': 'server.log',
            'SCAN_WINDOW_LINES': 'lots',
            'SCAN_INTERVAL_SECONDS': '-5',
            'TOP_PLAYERS_LIMIT': '3',
        })
        assert config.scan_window_lines == 500
        assert config.scan_interval_seconds == 30
        assert config.top_players_limit == 3

    def test_discord_token_alias(self):
        config = TrackerConfig.from_env({'LOG_FILE': 'server.log', 'DISCORD_TOKEN': 'abc'})
        assert config.bot_token == 'abc'

    def test_unknown_source_rejected(self):
        with pytest.raises(ConfigurationException):
            TrackerConfig.from_env({'LOG_SOURCE': 'carrier-pigeon'})

    def test_file_source_needs_path(self):
        with pytest.raises(ConfigurationException):
            TrackerConfig.from_env({})

    def test_incomplete_sftp_settings_rejected(self):
        with pytest.raises(ConfigurationException) as exc:
            TrackerConfig.from_env({'LOG_SOURCE': 'sftp', 'SFTP_HOST': 'game.example'})
        assert 'SFTP_USERNAME' in str(exc.value)
        assert 'SFTP_LOG_PATH' in str(exc.value)

    def test_docker_source_needs_container(self):
        with pytest.raises(ConfigurationException):
            TrackerConfig.from_env({'LOG_SOURCE': 'docker'})


class TestBuildLogSource:
    """Source selection"""

    def test_file(self):
        source = build_log_source(TrackerConfig.from_env({'LOG_FILE': 'server.log'}))
        assert isinstance(source, FileLogSource)
        assert source.path == Path('server.log')

    def test_sftp(self):
        source = build_log_source(TrackerConfig.from_env({
            'LOG_SOURCE': 'SFTP',
            'SFTP_HOST': 'game.example',
            'SFTP_PORT': '2222',
            'SFTP_USERNAME': 'steve',
            'SFTP_LOG_PATH': '/logs/server.log',
        }))
        assert isinstance(source, SFTPLogSource)
        assert source.port == 2222
        assert source.password is None

    def test_docker(self):
        source = build_log_source(TrackerConfig.from_env({'LOG_SOURCE': 'docker', 'DOCKER_CONTAINER': 'game'}))
        assert isinstance(source, DockerLogSource)
        assert source.container == 'game'
