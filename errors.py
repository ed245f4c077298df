"""Exception hierarchy shared by the moderation, classifier and publishing layers."""

from enum import Enum
from typing import Optional


class ModerationError(Exception):
    """Base class for every error raised by postguard."""

    transient = False


class ValidationError(ModerationError):
    """Post text rejected before any remote call is made."""

    status_code = 400


class ClassifierErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    UPSTREAM = "upstream"
    BAD_REQUEST = "bad_request"
    MALFORMED_RESPONSE = "malformed_response"
    NOT_CONFIGURED = "not_configured"


_TRANSIENT_KINDS = {
    ClassifierErrorKind.NETWORK,
    ClassifierErrorKind.TIMEOUT,
    ClassifierErrorKind.RATE_LIMIT,
    ClassifierErrorKind.UPSTREAM,
}

_USER_MESSAGES = {
    ClassifierErrorKind.AUTHENTICATION: "Invalid OpenAI API key configuration.",
    ClassifierErrorKind.NOT_CONFIGURED: "Invalid OpenAI API key configuration.",
    ClassifierErrorKind.QUOTA: "OpenAI API quota exceeded. Please contact support.",
    ClassifierErrorKind.RATE_LIMIT: "OpenAI API rate limit exceeded. Please try again later.",
    ClassifierErrorKind.TIMEOUT: "OpenAI API request timed out. Please try again.",
    ClassifierErrorKind.NETWORK: "Network error occurred. Please check your connection and try again.",
}


class ClassifierError(ModerationError):
    """The moderation classifier could not produce a usable response."""

    def __init__(self, message: str, kind: ClassifierErrorKind = ClassifierErrorKind.UPSTREAM,
                 status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = ClassifierErrorKind(kind)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind in _TRANSIENT_KINDS

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES.get(self.kind, "OpenAI API error. Please try again later.")


class PublishError(ModerationError):
    """The posting service rejected or never received the post."""

    def __init__(self, message: str, transient: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class PublishBlockedError(PublishError):
    """Publishing refused because the moderation decision did not allow it."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=False)
