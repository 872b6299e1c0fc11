from typing import Any, Dict

from .customised_types import ErrorCode


class PrivchatError(Exception):
    """Base for errors reported back to the originating channel."""

    code = "ERROR"
    default_detail = "Request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.detail}


class InvalidName(PrivchatError):
    code = ErrorCode.INVALID_NAME
    default_detail = "Username must be between 2 and 20 characters long"


class NameTaken(PrivchatError):
    code = ErrorCode.NAME_TAKEN
    default_detail = "Username already taken"


class Unauthenticated(PrivchatError):
    code = ErrorCode.UNAUTHENTICATED
    default_detail = "Not authenticated"


class UserNotFound(PrivchatError):
    code = ErrorCode.USER_NOT_FOUND
    default_detail = "User not found"


class AlreadyLoggedIn(PrivchatError):
    code = ErrorCode.ALREADY_LOGGED_IN
    default_detail = "User is already logged in on another connection"


class BadRequest(PrivchatError):
    code = ErrorCode.BAD_REQUEST
    default_detail = "Malformed request"


class UnknownEvent(PrivchatError):
    code = ErrorCode.UNKNOWN_EVENT
    default_detail = "Unknown event"
