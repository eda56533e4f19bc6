"""Error taxonomy shared by the core and the Telegram adapter layer.

Every error raised while handling a command derives from `GoldenAxeError` and
carries a `user_message` that is safe to show in the chat. Errors marked with
`escalate = True` indicate infrastructure trouble rather than a permission
decision; the command error boundary forwards those to the operational
channel in addition to replying.
"""

from __future__ import annotations

from typing import Optional


class GoldenAxeError(Exception):
    """Base golden-axe error."""

    escalate = False

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message if user_message is not None else message


class TransientError(Exception):
    """Marker for failures that may succeed when retried."""

    recoverable = True


class PermanentError(Exception):
    """Marker for failures that will not succeed when retried."""

    recoverable = False


class InputError(GoldenAxeError):
    """The command itself is malformed or used in the wrong place."""


class EmptyTitleError(InputError):
    def __init__(self) -> None:
        super().__init__("Title cannot be empty")


class NotInGroupError(InputError):
    def __init__(self) -> None:
        super().__init__("This command can only be used in group")


class NoSenderError(InputError):
    def __init__(self) -> None:
        super().__init__("The message has no sender")


class TitleNotFoundError(InputError):
    def __init__(self, title: str) -> None:
        super().__init__(f"Nobody holds the title {title!r} in this chat")
        self.title = title


class PermissionDeniedError(GoldenAxeError):
    """The acting principal (or the bot) is not allowed to perform the action."""


class UnidentifiedAnonymousSenderError(PermissionDeniedError):
    pass


class ConflictError(GoldenAxeError):
    """The requested change collides with existing state."""


class TitleAlreadyInUseError(ConflictError):
    def __init__(self, title: str, *, holder_id: int) -> None:
        super().__init__("Title already in use")
        self.title = title
        self.holder_id = holder_id


class PlatformError(GoldenAxeError):
    """Telegram API failure while reading or mutating chat state."""

    escalate = True


class PlatformUnavailableError(PlatformError):
    """Role snapshot could not be fetched."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            user_message="Failed to fetch chat information, please try again later",
        )


class PlatformActionError(PlatformError):
    """A privileged mutation (promote, set title, ...) failed."""


class StorageError(GoldenAxeError):
    """Title store I/O failure or corrupted data."""

    escalate = True

    def __init__(self, message: str) -> None:
        super().__init__(message, user_message="Failed to access the title database")
