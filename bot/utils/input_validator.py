"""
Input Validation Framework
Filters tokens pulled out of log lines that are not real player names
"""

import re
from typing import Any, Optional

# Subjects that show up in join/leave phrasing but are never players
PLAYER_NAME_BLACKLIST = frozenset({
    'client',
    'server',
    'system',
    'admin',
    'console',
    'websocket',
    'socket',
    'connection',
    'user',
    'player',
})

MIN_PLAYER_NAME_LENGTH = 3

PLAYER_NAME_PATTERN = re.compile(r'[A-Za-z][A-Za-z0-9_]*')


class InputValidator:
    """Player name validation"""

    @staticmethod
    def validate_player_name(name: Any) -> Optional[str]:
        """Return the name unchanged when it looks like a real player, else None"""
        if not isinstance(name, str):
            return None

        if len(name) < MIN_PLAYER_NAME_LENGTH:
            return None

        if name.lower() in PLAYER_NAME_BLACKLIST:
            return None

        if not PLAYER_NAME_PATTERN.fullmatch(name):
            return None

        return name


def is_valid_player_name(name: Any) -> bool:
    return InputValidator.validate_player_name(name) is not None
