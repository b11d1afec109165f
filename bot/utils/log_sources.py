"""
Log Sources
Fetch recent server output from a file, SFTP or docker
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import aiofiles
import asyncssh

from bot.utils.exceptions import LogSourceException

logger = logging.getLogger(__name__)


def tail_text(content: str, max_lines: int) -> str:
    """Last max_lines lines of content, each newline-terminated"""
    if max_lines <= 0:
        return ''
    lines = deque(content.splitlines(), maxlen=max_lines)
    return ''.join(f"{line}\n" for line in lines)


def complete_lines(content: str) -> str:
    """Drop a trailing line the server has not finished writing"""
    return content[:content.rfind('\n') + 1]


@dataclass
class LogChunk:
    """Complete lines read from a byte offset"""
    text: str
    position: int
    reset: bool = False


def chunk_from_bytes(data: bytes, position: Optional[int], max_lines: int) -> LogChunk:
    """
    Slice a whole log file at `position`.

    The returned position always sits just past the last complete line, so a
    line still being written is read again once it is finished. With no
    position, or when the file was truncated or replaced (shorter than the
    position, or the byte before it is not a line end), only the last
    max_lines lines are returned.
    """
    end = data.rfind(b'\n') + 1
    reset = position is not None and (
        position > len(data) or (position > 0 and data[position - 1:position] != b'\n')
    )

    if position is None or reset:
        text = tail_text(data[:end].decode('utf-8', errors='ignore'), max_lines)
        return LogChunk(text=text, position=end, reset=reset)

    if end <= position:
        return LogChunk(text='', position=position)
    return LogChunk(text=data[position:end].decode('utf-8', errors='ignore'), position=end)


class LogSource:
    """Boundary to the monitored server's output"""

    name = 'base'
    # Sources that can resume from a byte offset implement read_from()
    supports_offsets = False

    async def get_recent_lines(self, max_lines: int) -> str:
        raise NotImplementedError

    async def read_from(self, position: Optional[int], max_lines: int) -> LogChunk:
        raise NotImplementedError

    async def close(self):
        pass


class FileLogSource(LogSource):
    """Server log file on the local filesystem"""

    name = 'file'
    supports_offsets = True

    def __init__(self, path: Path, poll_interval: float = 1.0):
        self.path = Path(path)
        self.poll_interval = poll_interval
        # Byte offset just past the last line yielded by follow()
        self.follow_position: Optional[int] = None

    async def _read_bytes(self) -> bytes:
        try:
            async with aiofiles.open(self.path, 'rb') as f:
                return await f.read()
        except OSError as e:
            raise LogSourceException(f"Failed to read log file {self.path}: {e}") from e

    async def get_recent_lines(self, max_lines: int) -> str:
        return (await self.read_from(None, max_lines)).text

    async def read_from(self, position: Optional[int], max_lines: int) -> LogChunk:
        return chunk_from_bytes(await self._read_bytes(), position, max_lines)

    async def _read_appended(self, position: int) -> Tuple[Optional[os.stat_result], bytes]:
        """Stat of the open file and the bytes after position; (None, b'') if unreadable"""
        try:
            async with aiofiles.open(self.path, 'rb') as f:
                stat = os.fstat(f.fileno())
                if stat.st_size <= position:
                    return stat, b''
                await f.seek(position)
                return stat, await f.read()
        except OSError as e:
            # Rotated away between polls; try again on the next one
            logger.debug(f"Log file {self.path} unavailable while following: {e}")
            return None, b''

    async def follow(self, position: Optional[int] = None) -> AsyncIterator[str]:
        """
        Yield complete lines as they are appended, starting at `position`
        (end of file when None). follow_position is updated before each
        yield. A truncated or replaced file is followed from its start.
        """
        if position is None:
            try:
                position = self.path.stat().st_size
            except OSError:
                position = 0
        self.follow_position = position
        inode = None
        buffer = b''

        while True:
            stat, data = await self._read_appended(position)
            if stat is None:
                await asyncio.sleep(self.poll_interval)
                continue

            if stat.st_size < position or (inode is not None and stat.st_ino != inode):
                logger.info(f"Log file {self.path} was rotated or truncated, following from the start")
                inode = stat.st_ino
                position = 0
                self.follow_position = 0
                buffer = b''
                continue
            inode = stat.st_ino

            if not data:
                await asyncio.sleep(self.poll_interval)
                continue

            line_start = position - len(buffer)
            buffer += data
            position += len(data)
            *complete, buffer = buffer.split(b'\n')
            for line in complete:
                line_start += len(line) + 1
                self.follow_position = line_start
                yield line.decode('utf-8', errors='ignore').rstrip('\r')


class SFTPLogSource(LogSource):
    """Server log file read over SFTP with a pooled SSH connection"""

    name = 'sftp'
    supports_offsets = True

    def __init__(self, host: str, username: str, password: Optional[str],
                 remote_path: str, port: int = 22, connect_timeout: float = 30.0,
                 retries: int = 3):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.remote_path = remote_path
        self.connect_timeout = connect_timeout
        self.retries = retries
        self._conn: Optional[asyncssh.SSHClientConnection] = None

    async def get_connection(self) -> asyncssh.SSHClientConnection:
        """Reuse the open connection, otherwise connect with retry/backoff"""
        if self._conn is not None:
            if not self._conn.is_closed():
                return self._conn
            self._conn = None

        last_error: Optional[Exception] = None
        for attempt in range(self.retries):
            try:
                self._conn = await asyncio.wait_for(
                    asyncssh.connect(
                        self.host,
                        port=self.port,
                        username=self.username,
                        password=self.password,
                        known_hosts=None,
                    ),
                    timeout=self.connect_timeout
                )
                logger.debug(f"SFTP connected to {self.host}:{self.port}")
                return self._conn
            except (asyncio.TimeoutError, asyncssh.Error, OSError) as e:
                last_error = e
                logger.warning(f"SFTP connection attempt {attempt + 1} to {self.host}:{self.port} failed: {e}")
                if attempt < self.retries - 1:
                    await asyncio.sleep(2 ** attempt)

        raise LogSourceException(f"Could not connect to {self.host}:{self.port}: {last_error}")

    async def _read_bytes(self) -> bytes:
        conn = await self.get_connection()
        try:
            async with conn.start_sftp_client() as sftp:
                async with sftp.open(self.remote_path, 'rb') as f:
                    data = await f.read()
        except (asyncssh.Error, OSError) as e:
            # Drop the pooled connection so the next scan reconnects
            await self.close()
            raise LogSourceException(f"Failed to read {self.remote_path} on {self.host}: {e}") from e

        logger.debug(f"SFTP read {len(data)} bytes from {self.remote_path}")
        return data

    async def get_recent_lines(self, max_lines: int) -> str:
        return (await self.read_from(None, max_lines)).text

    async def read_from(self, position: Optional[int], max_lines: int) -> LogChunk:
        return chunk_from_bytes(await self._read_bytes(), position, max_lines)

    async def close(self):
        if self._conn is not None:
            self._conn.close()
            try:
                await self._conn.wait_closed()
            except (asyncssh.Error, OSError) as e:
                logger.debug(f"Ignoring error while closing SFTP connection: {e}")
            self._conn = None


class DockerLogSource(LogSource):
    """
    Output of the game server container via `docker logs --tail`.

    Lines keep docker's timestamp prefix so identical messages stay
    distinguishable between scans.
    """

    name = 'docker'

    def __init__(self, container: str, docker_bin: str = 'docker'):
        self.container = container
        self.docker_bin = docker_bin

    async def get_recent_lines(self, max_lines: int) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.docker_bin, 'logs', '--timestamps', '--tail', str(max_lines), self.container,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise LogSourceException(f"Could not run {self.docker_bin}: {e}") from e

        try:
            output, _ = await process.communicate()
        except asyncio.CancelledError:
            # Timed out by the caller; do not leave the process behind
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            raise LogSourceException(
                f"docker logs for {self.container} exited with {process.returncode}: "
                f"{output.decode('utf-8', errors='ignore').strip()[:200]}"
            )
        return output.decode('utf-8', errors='ignore')
