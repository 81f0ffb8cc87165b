"""Round-level errors. Per-persona provider failures never surface here."""


class CouncilError(Exception):
    """Base class for errors that abort a council request."""


class EmptyQueryError(CouncilError):
    """Raised when the question is blank."""

    def __init__(self) -> None:
        super().__init__("Missing query")


class NoActivePersonasError(CouncilError):
    """Raised before any remote call when the roster has no active persona."""

    def __init__(self) -> None:
        super().__init__("No active personas")


class InsufficientCreditsError(CouncilError):
    """Raised before any remote call when the caller cannot pay for a round."""

    code = "NO_CREDITS"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} has no credits left")


class CommitError(CouncilError):
    """Raised when the run record, stats or credit decrement cannot be written."""
