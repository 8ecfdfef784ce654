# core/errors.py
from typing import Optional


class CalendarBotError(Exception):
    """Base class for all errors raised by the calendar bot"""


class SourceFetchError(CalendarBotError):
    """Listing or downloading a calendar file failed"""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url

    @property
    def is_transient(self) -> bool:
        # No status means a connection-level failure
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class CalendarParseError(CalendarBotError):
    """A calendar file's content is malformed"""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source


class DeliveryError(CalendarBotError):
    """The notification sink rejected or failed a send"""


class CommandValidationError(CalendarBotError):
    """A command was invoked with invalid arguments"""
