"""Outcomes raised by the forum core.

Policy errors (``DuplicateEntry``, ``InvalidCredentials``, ``NotFound``) are
expected and the caller branches on them. ``Unauthenticated`` always becomes a
redirect to the login entry point. ``InternalFailure`` wraps store faults and
is shown to clients only as a generic failure.
"""


class ForumError(Exception):
    """Base class for forum core errors."""


class DuplicateEntry(ForumError):
    """Registration conflicts with an existing name or email."""


class InvalidCredentials(ForumError):
    """Login failed. Deliberately the same for unknown email and wrong password."""

    def __init__(self):
        super().__init__("Email or password is incorrect")


class NotFound(ForumError):
    """A user, post, comment or reaction target does not exist."""


class Unauthenticated(ForumError):
    """No valid session where one is required."""


class InternalFailure(ForumError):
    """A storage or transport fault; details stay in the server log."""
