"""
Custom Exception Hierarchy
Standardized exceptions for the presence tracker
"""

class PresenceTrackerException(Exception):
    """Base exception for the presence tracker"""
    pass

class LogSourceException(PresenceTrackerException):
    """Log source could not be read (timeout, unreachable, missing file)"""
    pass

class PersistenceException(PresenceTrackerException):
    """Snapshot could not be written to disk"""
    pass

class ConfigurationException(PresenceTrackerException):
    """Configuration-related exceptions"""
    pass
