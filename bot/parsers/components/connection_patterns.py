"""
Connection Pattern Matcher
Classifies raw server log lines into player join/leave events
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from bot.models.players import EVENT_JOIN, EVENT_LEAVE, LogEvent
from bot.utils.input_validator import is_valid_player_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    """One entry of a pattern table"""
    name: str
    regex: re.Pattern
    kind: Optional[str] = None
    name_group: int = 1
    attribute: Optional[str] = None
    value_group: Optional[int] = None


def _rule(name: str, pattern: str, **kwargs) -> PatternRule:
    return PatternRule(name=name, regex=re.compile(pattern, re.IGNORECASE), **kwargs)


# Server-native phrasing first; generic fallbacks only after every specific rule
JOIN_RULES: Tuple[PatternRule, ...] = (
    _rule('universe_add', r"\[Universe\|P\]\s+Adding player '(\w+)", kind=EVENT_JOIN),
    _rule('world_joined', r"\[World\|.*?\]\s+Player '(\w+)' joined world", kind=EVENT_JOIN),
    _rule('world_add', r"\[World\|.*?\]\s+Adding player '(\w+)' to world", kind=EVENT_JOIN),
    _rule('auth_flow', r'Starting authenticated flow for (\w+)', kind=EVENT_JOIN),
    _rule('connection_complete', r'Connection complete for (\w+)', kind=EVENT_JOIN),
    _rule('identity_validated', r'Identity token validated for (\w+)', kind=EVENT_JOIN),
    _rule('generic_player_joined', r'Player\s+(\w+)\s+joined', kind=EVENT_JOIN),
    _rule('generic_player_connected', r'Player\s+(\w+)\s+connected to the server', kind=EVENT_JOIN),
    # "X has joined" must precede "X joined" or 'has' is taken as the name
    _rule('generic_has_joined', r'(\w+)\s+has joined the game', kind=EVENT_JOIN),
    _rule('generic_joined_game', r'(\w+)\s+joined the game', kind=EVENT_JOIN),
    _rule('generic_joined_server', r'(\w+)\s+joined the server', kind=EVENT_JOIN),
    _rule('generic_logged_in', r'(\w+)\s+logged in with entity id', kind=EVENT_JOIN),
)

LEAVE_RULES: Tuple[PatternRule, ...] = (
    _rule('disconnecting', r'Disconnecting (\w+) at', kind=EVENT_LEAVE),
    _rule('universe_remove', r"\[Universe\|P\]\s+Removing player '(\w+)", kind=EVENT_LEAVE),
    _rule('systems_remove', r"\[PlayerSystems\]\s+Removing player '(\w+)", kind=EVENT_LEAVE),
    _rule('generic_player_left', r'Player\s+(\w+)\s+left', kind=EVENT_LEAVE),
    _rule('generic_player_disconnected', r'Player\s+(\w+)\s+disconnected', kind=EVENT_LEAVE),
    _rule('generic_has_left', r'(\w+)\s+has left', kind=EVENT_LEAVE),
    _rule('generic_left_game', r'(\w+)\s+left the game', kind=EVENT_LEAVE),
    _rule('generic_left_server', r'(\w+)\s+left the server', kind=EVENT_LEAVE),
    _rule('generic_disconnected', r'(\w+)\s+disconnected', kind=EVENT_LEAVE),
    _rule('generic_logged_out', r'(\w+)\s+logged out', kind=EVENT_LEAVE),
    _rule('generic_quit', r'(\w+)\s+quit', kind=EVENT_LEAVE),
    _rule('generic_timed_out', r'(\w+)\s+timed out', kind=EVENT_LEAVE),
    _rule('generic_lost_connection', r'(\w+)\s+lost connection', kind=EVENT_LEAVE),
)

# Enrichment rules name which group holds the player and which holds the value
ENRICHMENT_RULES: Tuple[PatternRule, ...] = (
    _rule('uuid_of_player', r'UUID of player (\w+) is ([a-f0-9-]+)',
          attribute='uuid', name_group=1, value_group=2),
    _rule('uuid_bracketed', r'(\w+)\[.*?([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})',
          attribute='uuid', name_group=1, value_group=2),
    _rule('uuid_identity', r'Identity token validated for (\w+).*?([a-f0-9-]{36})',
          attribute='uuid', name_group=1, value_group=2),
    _rule('ip_bracketed', r'(\w+)\[/([0-9.]+):\d+\]',
          attribute='ip', name_group=1, value_group=2),
    _rule('ip_logged_in', r'(\w+) logged in with.*from /([0-9.]+)',
          attribute='ip', name_group=1, value_group=2),
    _rule('ip_connection_from', r'Connection from /([0-9.]+):\d+.*player[:\s]+(\w+)',
          attribute='ip', name_group=2, value_group=1),
    _rule('ip_connected_from', r'(\w+).*connected from ([0-9.]+)',
          attribute='ip', name_group=1, value_group=2),
    _rule('world_tag', r"\[World\|(\w+)\]\s+Player '(\w+)'",
          attribute='world', name_group=2, value_group=1),
    _rule('world_joined', r"(\w+) joined world '?(\w+)'?",
          attribute='world', name_group=1, value_group=2),
    _rule('world_adding', r"Adding player '(\w+)' to world '?(\w+)'?",
          attribute='world', name_group=1, value_group=2),
)


class ConnectionPatternMatcher:
    """Turns one log line into a LogEvent using the rule tables above"""

    def __init__(self,
                 join_rules: Tuple[PatternRule, ...] = JOIN_RULES,
                 leave_rules: Tuple[PatternRule, ...] = LEAVE_RULES,
                 enrichment_rules: Tuple[PatternRule, ...] = ENRICHMENT_RULES,
                 name_validator: Callable[[str], bool] = is_valid_player_name):
        self.event_rules: List[PatternRule] = list(join_rules) + list(leave_rules)
        self.enrichment_rules = enrichment_rules
        self.name_validator = name_validator

    def classify(self, line: str) -> Optional[LogEvent]:
        """Return the event for the first rule yielding a valid player name"""
        for rule in self.event_rules:
            match = rule.regex.search(line)
            if not match:
                continue

            candidate = match.group(rule.name_group)
            if not self.name_validator(candidate):
                logger.debug(f"Rule {rule.name} matched non-player token '{candidate}'")
                continue

            event = LogEvent(kind=rule.kind, name=candidate)
            if rule.kind == EVENT_JOIN:
                for attr, value in self.extract_enrichment(line, candidate).items():
                    setattr(event, attr, value)
            return event

        return None

    def extract_enrichment(self, line: str, player_name: str) -> Dict[str, str]:
        """Collect uuid/ip/world for player_name from the same line"""
        found: Dict[str, str] = {}
        wanted = player_name.lower()

        for rule in self.enrichment_rules:
            if rule.attribute in found:
                continue
            match = rule.regex.search(line)
            if not match:
                continue
            subject = match.group(rule.name_group)
            value = match.group(rule.value_group)
            if subject and subject.lower() == wanted and value:
                found[rule.attribute] = value

        return found
