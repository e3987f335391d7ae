class ArenaException(Exception):
    """Base exception for the arena service."""

    pass


class ValidationError(ArenaException):
    """Raised when an input is malformed or out of range."""

    pass


class NotFoundError(ArenaException):
    """Raised when a game, a record or the publisher address cannot be resolved."""

    pass


class StateConflictError(ArenaException):
    """Raised when an action is not allowed in the current game state."""

    def __init__(self, message: str, game_id: int | None = None):
        super().__init__(message)
        self.game_id = game_id


class InactiveGameError(StateConflictError):
    def __init__(self, game_id: int):
        super().__init__("Game is not active", game_id)


class GameFullError(StateConflictError):
    def __init__(self, game_id: int):
        super().__init__("Game is full", game_id)


class StakeMismatchError(StateConflictError):
    def __init__(self, game_id: int, expected: int, received: int):
        super().__init__("Incorrect stake amount", game_id)
        self.expected = expected
        self.received = received


class NotAPlayerError(StateConflictError):
    def __init__(self, game_id: int, player: str):
        super().__init__("Not a player in this game", game_id)
        self.player = player


class AlreadyMovedError(StateConflictError):
    def __init__(self, game_id: int, player: str):
        super().__init__("Choice already made", game_id)
        self.player = player


class ConsecutiveMoveError(StateConflictError):
    def __init__(self, game_id: int, player: str):
        super().__init__("Cannot make two moves in a row", game_id)
        self.player = player


class UnavailableError(ArenaException):
    """Raised when a write path needs a signing key that is not configured."""

    pass


class InsufficientFundsError(ArenaException):
    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient balance. Required: {required}, Available: {available}"
        )
        self.required = required
        self.available = available


class LedgerError(ArenaException):
    """Raised when a schema, registration or transaction operation fails."""

    pass


class SchemaAlreadyRegisteredError(LedgerError):
    def __init__(self, schema_ids: list[str]):
        super().__init__(f"Schemas already registered: {', '.join(schema_ids)}")
        self.schema_ids = schema_ids


class LedgerTimeoutError(LedgerError):
    def __init__(self, tx_ref: str, timeout: float):
        super().__init__(f"Transaction {tx_ref} not confirmed within {timeout}s")
        self.tx_ref = tx_ref
        self.timeout = timeout
