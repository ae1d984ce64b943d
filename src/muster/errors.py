"""Error taxonomy shared across Muster components.

- UserInputError: bad date/time/timezone/name, reported back to the user.
- NotFoundError: an event, group or message is absent.
- ExternalServiceError: a chat-platform call failed.
- PersistenceError: the state document could not be read or written.
- ReplyTimeout: nobody answered a conversational prompt in time.
"""


class MusterError(Exception):
    """Base class for Muster errors."""


class UserInputError(MusterError, ValueError):
    """Invalid input supplied by a user.

    The message is safe to show to the user verbatim.
    """


class DuplicateEventError(UserInputError):
    """An event with the same (case-insensitive) name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"An event called '{name}' already exists.")
        self.name = name


class NotFoundError(MusterError):
    """A referenced event, group or message does not exist."""


class ExternalServiceError(MusterError):
    """A call to the chat platform failed."""


class PersistenceError(MusterError):
    """The durable state document could not be loaded or saved."""


class ReplyTimeout(MusterError):
    """No reply arrived within the allotted time."""
