"""Game error taxonomy.

None of these are fatal: routes translate them into HTTP/WebSocket error
payloads and background loops log them and retry on the next tick.
"""


class GameError(Exception):
    """Base class for all recoverable game errors."""

    code = "game_error"


class ConnectionUnavailable(GameError):
    """The shared store could not be reached."""

    code = "connection_unavailable"


class TransactionConflict(GameError):
    """A transaction kept losing its compare-and-set and gave up."""

    code = "transaction_conflict"


class AlreadySubmitted(GameError):
    code = "already_submitted"


class RoundClosed(GameError):
    code = "round_closed"


class InvalidDilemmaIndex(GameError):
    code = "invalid_dilemma_index"


class UnknownParticipant(GameError):
    code = "unknown_participant"


class GameFull(GameError):
    code = "game_full"
