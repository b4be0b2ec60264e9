"""Errors raised by the event room coordinator."""


class InvalidSession(Exception):
    """Resume requested for a room that does not exist, or without a username/room."""

    def __init__(self, message: str = "Invalid session") -> None:
        super().__init__(message)
        self.message = message
