# Presence Tracker - Parsers
# Parser module exports
from .presence_log_parser import PresenceLogParser
from .player_tracker import PlayerTracker

__all__ = ['PresenceLogParser', 'PlayerTracker']
