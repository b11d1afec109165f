"""
Tracker configuration
Environment-driven settings for the presence tracker and its log source
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from bot.utils.exceptions import ConfigurationException
from bot.utils.log_sources import DockerLogSource, FileLogSource, LogSource, SFTPLogSource

logger = logging.getLogger(__name__)

LOG_SOURCE_TYPES = ('file', 'sftp', 'docker')


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {raw!r}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"{key} must be positive, using default {default}")
        return default
    return value


@dataclass
class TrackerConfig:
    data_path: Path = Path('./data')
    log_source: str = 'file'
    log_file: Optional[Path] = None
    sftp_host: Optional[str] = None
    sftp_port: int = 22
    sftp_username: Optional[str] = None
    sftp_password: Optional[str] = None
    sftp_log_path: Optional[str] = None
    docker_container: Optional[str] = None
    scan_window_lines: int = 500
    scan_interval_seconds: int = 30
    log_source_timeout: int = 10
    top_players_limit: int = 10
    bot_token: Optional[str] = None
    log_level: str = 'INFO'
    follow_log: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'TrackerConfig':
        """Build the config from environment variables (os.environ by default)"""
        env = os.environ if env is None else env

        log_file = env.get('LOG_FILE')
        config = cls(
            data_path=Path(env.get('DATA_PATH') or './data'),
            log_source=(env.get('LOG_SOURCE') or 'file').strip().lower(),
            log_file=Path(log_file) if log_file else None,
            sftp_host=env.get('SFTP_HOST') or None,
            sftp_port=_env_int(env, 'SFTP_PORT', 22),
            sftp_username=env.get('SFTP_USERNAME') or None,
            sftp_password=env.get('SFTP_PASSWORD') or None,
            sftp_log_path=env.get('SFTP_LOG_PATH') or None,
            docker_container=env.get('DOCKER_CONTAINER') or None,
            scan_window_lines=_env_int(env, 'SCAN_WINDOW_LINES', 500),
            scan_interval_seconds=_env_int(env, 'SCAN_INTERVAL_SECONDS', 30),
            log_source_timeout=_env_int(env, 'LOG_SOURCE_TIMEOUT', 10),
            top_players_limit=_env_int(env, 'TOP_PLAYERS_LIMIT', 10),
            bot_token=env.get('BOT_TOKEN') or env.get('DISCORD_TOKEN') or None,
            log_level=(env.get('LOG_LEVEL') or 'INFO').upper(),
            follow_log=(env.get('FOLLOW_LOG') or 'false').strip().lower() in ('1', 'true', 'yes'),
        )
        config.validate()
        return config

    def validate(self):
        if self.log_source not in LOG_SOURCE_TYPES:
            raise ConfigurationException(
                f"LOG_SOURCE must be one of {', '.join(LOG_SOURCE_TYPES)}, got '{self.log_source}'"
            )
        if self.log_source == 'file' and not self.log_file:
            raise ConfigurationException("LOG_FILE is required when LOG_SOURCE=file")
        if self.log_source == 'sftp':
            missing = [
                key for key, value in (
                    ('SFTP_HOST', self.sftp_host),
                    ('SFTP_USERNAME', self.sftp_username),
                    ('SFTP_LOG_PATH', self.sftp_log_path),
                ) if not value
            ]
            if missing:
                raise ConfigurationException(f"Missing SFTP settings: {', '.join(missing)}")
        if self.log_source == 'docker' and not self.docker_container:
            raise ConfigurationException("DOCKER_CONTAINER is required when LOG_SOURCE=docker")


def build_log_source(config: TrackerConfig) -> LogSource:
    """Instantiate the log source selected by LOG_SOURCE"""
    if config.log_source == 'sftp':
        return SFTPLogSource(
            host=config.sftp_host,
            port=config.sftp_port,
            username=config.sftp_username,
            password=config.sftp_password,
            remote_path=config.sftp_log_path,
        )
    if config.log_source == 'docker':
        return DockerLogSource(config.docker_container)
    return FileLogSource(config.log_file)
