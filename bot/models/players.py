"""
Player presence records
Online sessions, lifetime history entries and classified log events
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EVENT_JOIN = 'join'
EVENT_LEAVE = 'leave'

ENRICHMENT_FIELDS = ('uuid', 'ip', 'world')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize as ISO-8601 UTC with millisecond precision and a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso(value: Any) -> datetime:
    """Parse a persisted timestamp; naive values are taken as UTC"""
    if not isinstance(value, str):
        raise ValueError(f"Expected ISO timestamp string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class LogEvent:
    """Classification result of one log line"""
    kind: str
    name: str
    uuid: Optional[str] = None
    ip: Optional[str] = None
    world: Optional[str] = None

    @property
    def enrichment(self) -> Dict[str, str]:
        return {
            attr: getattr(self, attr)
            for attr in ENRICHMENT_FIELDS
            if getattr(self, attr)
        }


@dataclass
class OnlineSession:
    """A player believed to be connected right now"""
    name: str
    joined_at: datetime
    last_activity: Optional[datetime] = None
    uuid: Optional[str] = None
    ip: Optional[str] = None
    world: Optional[str] = None

    def merge(self, enrichment: Dict[str, str]) -> bool:
        """Fill in attributes that are still unknown; known values are kept"""
        changed = False
        for attr, value in enrichment.items():
            if value and not getattr(self, attr):
                setattr(self, attr, value)
                changed = True
        return changed

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'joinedAt': to_iso(self.joined_at),
        }
        for attr in ENRICHMENT_FIELDS:
            value = getattr(self, attr)
            if value:
                data[attr] = value
        if self.last_activity:
            data['lastActivity'] = to_iso(self.last_activity)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OnlineSession':
        last_activity = data.get('lastActivity')
        return cls(
            name=data['name'],
            joined_at=parse_iso(data['joinedAt']),
            last_activity=parse_iso(last_activity) if last_activity else None,
            uuid=data.get('uuid') or None,
            ip=data.get('ip') or None,
            world=data.get('world') or None,
        )


@dataclass
class HistoryEntry:
    """Everything known about one player across all sessions"""
    name: str
    first_seen: datetime
    last_seen: datetime
    play_time: int = 0
    session_count: int = 0
    uuid: Optional[str] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'name': self.name}
        if self.uuid:
            data['uuid'] = self.uuid
        data.update({
            'firstSeen': to_iso(self.first_seen),
            'lastSeen': to_iso(self.last_seen),
            'playTime': self.play_time,
            'sessionCount': self.session_count,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        first_seen = parse_iso(data['firstSeen'])
        last_seen = parse_iso(data['lastSeen'])
        return cls(
            name=data['name'],
            uuid=data.get('uuid') or None,
            first_seen=min(first_seen, last_seen),
            last_seen=max(first_seen, last_seen),
            play_time=max(0, int(data.get('playTime', 0))),
            session_count=max(0, int(data.get('sessionCount', 0))),
        )
