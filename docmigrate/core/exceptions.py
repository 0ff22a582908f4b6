"""
Migration Error Types
Exception hierarchy used by the engine, the runner and the CLI
"""
from typing import Any, Dict, Optional


class MigrationError(Exception):
    """
    Base exception for the migration engine.
    All engine exceptions inherit from this class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(MigrationError):
    """Missing or invalid configuration; raised before touching the database"""


class DatabaseConnectionError(MigrationError):
    """The document store could not be reached or the URI is malformed"""

    def __init__(self, message: str, uri_host: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if uri_host:
            details["host"] = uri_host
        super().__init__(message, details)


class StepDefinitionError(MigrationError):
    """A step cannot execute at all (malformed or unknown step)"""

    def __init__(self, message: str, step_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if step_name:
            details["step"] = step_name
        self.step_name = step_name
        super().__init__(message, details)


class MigrationLockError(MigrationError):
    """Another migration run holds the advisory lock on this database"""

    def __init__(self, message: str, owner: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"owner": owner or {}})
        self.owner = owner or {}
