"""
Custom exceptions for AFK Bot
Provides specific error types and classification of game-session failures
"""

import re
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class AFKBotException(Exception):
    """Base exception for all AFK Bot errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging"""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }


class ErrorCategory(str, Enum):
    """Categories of network/lifecycle errors reported by the game client"""
    REFUSED = "refused"
    TIMED_OUT = "timed_out"
    NOT_FOUND = "not_found"
    VERSION_MISMATCH = "version_mismatch"
    INVALID_IDENTITY = "invalid_identity"
    UNKNOWN = "unknown"


REMEDIATION_HINTS = {
    ErrorCategory.REFUSED: "Server refused the connection - check that it is online and SERVER_PORT is correct",
    ErrorCategory.TIMED_OUT: "Connection timed out - server may be overloaded or behind a firewall",
    ErrorCategory.NOT_FOUND: "Host not found - check SERVER_HOST for typos",
    ErrorCategory.VERSION_MISMATCH: "Protocol version mismatch - set MC_VERSION to the server's version",
    ErrorCategory.INVALID_IDENTITY: "Invalid session/identity - check BOT_USERNAME, BOT_PASSWORD and AUTH_TYPE",
    ErrorCategory.UNKNOWN: "Unexpected session error - will retry",
}

_CATEGORY_MARKERS = [
    (ErrorCategory.REFUSED, ('ECONNREFUSED', 'connection refused')),
    (ErrorCategory.TIMED_OUT, ('ETIMEDOUT', 'timed out', 'timeout')),
    (ErrorCategory.NOT_FOUND, ('ENOTFOUND', 'EAI_AGAIN', 'getaddrinfo')),
    (ErrorCategory.VERSION_MISMATCH, ('This server is version', 'unsupported protocol version', 'Outdated')),
    (ErrorCategory.INVALID_IDENTITY, ('Invalid session', 'Failed to verify username', 'invalid credentials')),
]

_SERVER_VERSION_RE = re.compile(r"This server is version ([\d.]+)")


# Session Related Exceptions
class SessionException(AFKBotException):
    """Base exception for game-session errors"""
    pass


class SessionCreationException(SessionException):
    """Raised when the client library fails to construct a session"""
    pass


class ConnectionFailedException(SessionException):
    """Network or lifecycle error reported by an established session"""

    def __init__(self, message: str, category: ErrorCategory, server_version: Optional[str] = None):
        super().__init__(message, {
            'category': category.value,
            'server_version': server_version
        })
        self.category = category
        self.server_version = server_version

    @property
    def hint(self) -> str:
        return REMEDIATION_HINTS[self.category]


# Movement Related Exceptions
class MovementException(AFKBotException):
    """Raised when simulated input fails"""

    def __init__(self, message: str, control: Optional[str] = None):
        super().__init__(message, {'control': control})
        self.control = control


# Configuration Related Exceptions
class ConfigurationException(AFKBotException, ValueError):
    """Raised when configuration value is invalid; still a ValueError for callers of Config.validate()"""

    def __init__(self, message: str, config_key: str, value: Any = None):
        super().__init__(message, {'config_key': config_key, 'value': value})
        self.config_key = config_key
        self.value = value


def classify_session_error(error: BaseException) -> ConnectionFailedException:
    """
    Classify an error emitted by the game client

    Args:
        error: Exception (or bridged error) raised by the session

    Returns:
        ConnectionFailedException carrying the category and, for version
        mismatches, the version reported by the server
    """
    if isinstance(error, ConnectionFailedException):
        return error

    text = str(error) or error.__class__.__name__
    lowered = text.lower()

    category = ErrorCategory.UNKNOWN
    for candidate, markers in _CATEGORY_MARKERS:
        if any(marker.lower() in lowered for marker in markers):
            category = candidate
            break

    server_version = None
    match = _SERVER_VERSION_RE.search(text)
    if match:
        category = ErrorCategory.VERSION_MISMATCH
        server_version = match.group(1).rstrip('.')

    return ConnectionFailedException(text, category, server_version)


def handle_exception(exception: Exception, logger=None) -> Dict[str, Any]:
    """
    Handle exception and return formatted error info

    Args:
        exception: The exception to handle
        logger: Optional logger instance

    Returns:
        Dictionary with error information
    """
    if isinstance(exception, AFKBotException):
        error_info = exception.to_dict()
    else:
        error_info = {
            'error_type': exception.__class__.__name__,
            'message': str(exception),
            'details': {},
            'timestamp': datetime.now().isoformat()
        }

    if logger:
        if isinstance(exception, (ConnectionFailedException, MovementException)):
            logger.warning(f"{error_info['error_type']}: {error_info['message']}")
        elif isinstance(exception, ConfigurationException):
            logger.error(f"{error_info['error_type']}: {error_info['message']}", extra=error_info['details'])
        else:
            logger.error(f"{error_info['error_type']}: {error_info['message']}", exc_info=exception)

    return error_info
