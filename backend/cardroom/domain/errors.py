class GameError(Exception):
    code = "GAME_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GameError, ValueError):
    """Action is not legal right now (wrong stage, turn, balance or hand shape)."""

    code = "BAD_REQUEST"
    status_code = 400


class NotFoundError(GameError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(GameError):
    """Another action on the same room won the race; retry from a fresh load."""

    code = "CONFLICT"
    status_code = 409


class InternalError(GameError):
    code = "INTERNAL"
    status_code = 500


class DeckError(InternalError):
    code = "DECK_UNAVAILABLE"
