"""
Error Taxonomy for the Chat Server

Every recoverable failure raised by the stores or the session handler is a
ChatError. The session handler turns these into a single outbound error
event for the requesting connection; none of them end the session.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Machine-readable error codes sent to clients."""

    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    HANDLE_TAKEN = "HANDLE_TAKEN"
    DISPLAY_NAME_TAKEN = "DISPLAY_NAME_TAKEN"
    NAME_CONFLICT = "NAME_CONFLICT"
    WRONG_PASSWORD = "WRONG_PASSWORD"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    MUTED = "MUTED"
    BANNED = "BANNED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    BLOCKED = "BLOCKED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ChatError(Exception):
    """
    Base class for all client-visible errors.

    Attributes:
        code: The ErrorCode reported to the client
        message: Human readable message reported to the client
    """

    code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the payload of an error event."""
        return {"code": self.code.value, "message": self.message}


class NotAuthenticated(ChatError):
    code = ErrorCode.NOT_AUTHENTICATED
    default_message = "Not authenticated"


class PermissionDenied(ChatError):
    code = ErrorCode.PERMISSION_DENIED
    default_message = "No permission"


class NotFound(ChatError):
    code = ErrorCode.NOT_FOUND
    default_message = "Not found"


class InvalidCredentials(ChatError):
    code = ErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid credentials"


class HandleTaken(ChatError):
    code = ErrorCode.HANDLE_TAKEN
    default_message = "Username exists"


class DisplayNameTaken(ChatError):
    code = ErrorCode.DISPLAY_NAME_TAKEN
    default_message = "Display name already taken"


class NameConflict(ChatError):
    code = ErrorCode.NAME_CONFLICT
    default_message = "Name already taken"


class WrongPassword(ChatError):
    code = ErrorCode.WRONG_PASSWORD
    default_message = "Wrong password"


class QuotaExceeded(ChatError):
    code = ErrorCode.QUOTA_EXCEEDED
    default_message = "Maximum free changes used. Submit a request instead."


class Muted(ChatError):
    code = ErrorCode.MUTED
    default_message = "You are muted"


class Banned(ChatError):
    code = ErrorCode.BANNED
    default_message = "Banned"


class ValidationFailed(ChatError):
    code = ErrorCode.VALIDATION_FAILED
    default_message = "Invalid request"


class Blocked(ChatError):
    code = ErrorCode.BLOCKED
    default_message = "You are blocked by this user"
