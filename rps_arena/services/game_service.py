"""Game session use cases on top of the ledger.

- Routers call this layer; they never touch the ledger client directly.
- Every action re-reads the latest GameRecord right before computing the next one.
- Round resolution runs inline once both choices of a round are stored.
"""

import logging
from typing import Callable, List, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from rps_arena.converter import DataConverter, now_ms, to_bytes32
from rps_arena.domain.round_rules import (
    ZERO_ADDRESS,
    GameType,
    is_playable_choice,
    resolve_round,
)
from rps_arena.exceptions import (
    AlreadyMovedError,
    ConsecutiveMoveError,
    GameFullError,
    InactiveGameError,
    LedgerError,
    NotAPlayerError,
    NotFoundError,
    SchemaAlreadyRegisteredError,
    StakeMismatchError,
    StateConflictError,
    UnavailableError,
    ValidationError,
)
from rps_arena.ledger_client import LedgerClient
from rps_arena.models.dc_models import (
    CreateGameResult,
    GameView,
    JoinGameResult,
    MoveOutcome,
    RoundResolution,
)
from rps_arena.models.schema_models import (
    GAME_SCHEMAS,
    DataStream,
    EventStream,
    GameCreatedRecord,
    GameEndRecord,
    GameJoinedRecord,
    GameRecord,
    LedgerRow,
    MoveRecord,
    RoundResultRecord,
    parse_address,
)
from rps_arena.signer import Signer
from uuid6 import uuid7

GAME_CREATED_EVENT = "GameCreated"
GAME_JOINED_EVENT = "GameJoined"
PLAYER_MOVED_EVENT = "PlayerMoved"
ROUND_PLAYED_EVENT = "RoundPlayed"
GAME_ENDED_EVENT = "GameEnded"

Row = TypeVar("Row", bound=LedgerRow)


def validate_address(address: str, field: str = "address") -> str:
    try:
        return parse_address(address)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {address!r}")


def game_topic(game_id: int) -> str:
    return "0x" + format(game_id, "064x")


def decode_row(model: Type[Row], row: list) -> Row:
    try:
        return model.from_row(row)
    except (ValueError, PydanticValidationError) as e:
        raise LedgerError(f"Malformed {model.schema_name} record: {e}") from e


def decode_rows(model: Type[Row], rows: List[list]) -> List[Row]:
    """Decode a schema scan, skipping rows that do not match the layout."""
    decoded = []
    for row in rows:
        try:
            decoded.append(model.from_row(row))
        except (ValueError, PydanticValidationError) as e:
            logging.warning(f"Skipping malformed {model.schema_name} record: {e}")
    return decoded


class GameService:
    def __init__(
        self,
        ledger: LedgerClient,
        signer: Signer | None = None,
        publisher: str | None = None,
        clock: Callable[[], int] = now_ms,
        confirmation_timeout: float | None = None,
    ):
        self.ledger = ledger
        self.signer = signer
        self.publisher = publisher.lower() if publisher else None
        self.clock = clock
        self.confirmation_timeout = confirmation_timeout
        self.data_converter = DataConverter()
        self._schemas_ready = False

    def schema_id(self, model: Type[LedgerRow]) -> str:
        return self.ledger.compute_schema_id(model.definition)

    def publisher_address(self) -> str:
        if self.signer is not None:
            return self.signer.address
        if self.publisher:
            return self.publisher
        raise NotFoundError("Publisher address not configured")

    def require_signer(self) -> Signer:
        if self.signer is None:
            raise UnavailableError(
                "Signer not available. Set SIGNER_ADDRESS and SIGNER_KEY for write operations."
            )
        return self.signer

    async def ensure_schemas_registered(self) -> None:
        if self._schemas_ready:
            return
        signer = self.require_signer()
        try:
            tx_ref = await self.ledger.register_schemas(
                [(model.schema_name, model.definition) for model in GAME_SCHEMAS], signer
            )
            await self.ledger.wait_for_confirmation(tx_ref, self.confirmation_timeout)
            logging.info(f"Registered game schemas in {tx_ref}")
        except SchemaAlreadyRegisteredError as e:
            logging.warning(f"Game schemas already registered: {e}")
        self._schemas_ready = True

    def _stream(self, key: str, record: LedgerRow) -> DataStream:
        return DataStream(
            schema_id=self.schema_id(type(record)),
            data_key=to_bytes32(key),
            data=record.to_row(),
        )

    @staticmethod
    def _event(name: str, game_id: int) -> EventStream:
        return EventStream(event_name=name, topics=[game_topic(game_id)])

    async def _commit(self, records: List[DataStream], events: List[EventStream]) -> str:
        signer = self.require_signer()
        await self.ensure_schemas_registered()
        tx_ref = await self.ledger.set_and_emit(records, events, signer)
        await self.ledger.wait_for_confirmation(tx_ref, self.confirmation_timeout)
        return tx_ref

    async def create_session(self, game_type: int, stake: int, initiator: str) -> CreateGameResult:
        """Open a new session with the second slot empty.

        Args:
            game_type (int): GameType of the session
            stake (int): Stake each player commits, in the smallest unit
            initiator (str): Address of player1
        Returns:
            CreateGameResult: New game id and the transaction reference
        """
        if isinstance(game_type, bool) or game_type not in set(GameType):
            raise ValidationError(f"Unknown game type: {game_type}")
        if isinstance(stake, bool) or not isinstance(stake, int) or stake <= 0:
            raise ValidationError(f"Stake must be a positive integer: {stake!r}")
        initiator = validate_address(initiator, "player address")
        if initiator == ZERO_ADDRESS:
            raise ValidationError("Player address must not be the zero address")
        self.require_signer()

        game_id = uuid7().int
        timestamp = self.clock()
        created = GameCreatedRecord(
            timestamp=timestamp,
            game_id=game_id,
            player1=initiator,
            stake=stake,
            game_type=int(game_type),
        )
        game = GameRecord(
            timestamp=timestamp,
            game_id=game_id,
            player1=initiator,
            stake=stake,
            game_type=int(game_type),
        )
        tx_ref = await self._commit(
            [self._stream(f"created-{game_id}", created), self._stream(f"game-{game_id}", game)],
            [self._event(GAME_CREATED_EVENT, game_id)],
        )
        logging.info(f"Game {game_id} created by {initiator} (type={int(game_type)}, stake={stake})")
        return CreateGameResult(game_id=game_id, tx_ref=tx_ref)

    async def join_session(self, game_id: int, joiner: str, stake: int) -> JoinGameResult:
        joiner = validate_address(joiner, "player address")
        if joiner == ZERO_ADDRESS:
            raise ValidationError("Player address must not be the zero address")
        self.require_signer()

        game = await self.get_session(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        if not game.is_active:
            raise InactiveGameError(game_id)
        if game.has_opponent():
            raise GameFullError(game_id)
        if stake != game.stake:
            raise StakeMismatchError(game_id, game.stake, stake)
        if joiner == game.player1:
            raise StateConflictError("Cannot join your own game", game_id)

        timestamp = self.clock()
        joined = GameJoinedRecord(timestamp=timestamp, game_id=game_id, player2=joiner)
        next_game = game.model_copy(update={"timestamp": timestamp, "player2": joiner})
        tx_ref = await self._commit(
            [self._stream(f"joined-{game_id}", joined), self._stream(f"game-{game_id}", next_game)],
            [self._event(GAME_JOINED_EVENT, game_id)],
        )
        logging.info(f"Game {game_id} joined by {joiner}")
        return JoinGameResult(tx_ref=tx_ref)

    async def submit_move(self, game_id: int, player: str, choice: int) -> MoveOutcome:
        """Store a player's choice and resolve the round once both choices are in.

        Args:
            game_id (int): To identify the session
            player (str): Address of the moving player
            choice (int): 1=Rock, 2=Paper, 3=Scissors
        Returns:
            MoveOutcome: Move transaction, plus the round result when the move completed a round
        """
        if isinstance(choice, bool) or not is_playable_choice(choice):
            raise ValidationError(f"Invalid choice: {choice!r}")
        player = validate_address(player, "player address")
        self.require_signer()

        game = await self.get_session(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        if game.is_active and game.has_pending_pair():
            # A previous move was committed but its round never resolved.
            logging.warning(f"Game {game_id} has an unresolved round, resolving it first")
            await self._resolve(game)
            game = await self.get_session(game_id)
        if not game.is_active:
            raise InactiveGameError(game_id)

        index = game.player_index(player)
        if index is None:
            raise NotAPlayerError(game_id, player)
        if not game.has_opponent():
            raise StateConflictError("Waiting for an opponent to join", game_id)
        if game.choices[index] != 0:
            raise AlreadyMovedError(game_id, player)
        if game.last_mover == player:
            raise ConsecutiveMoveError(game_id, player)

        timestamp = self.clock()
        choices = list(game.choices)
        choices[index] = int(choice)
        round_number = game.rounds_played + 1
        move = MoveRecord(
            timestamp=timestamp,
            game_id=game_id,
            player=player,
            choice=int(choice),
            round_number=round_number,
        )
        moved = game.model_copy(
            update={"timestamp": timestamp, "choices": choices, "last_mover": player}
        )
        tx_ref = await self._commit(
            [
                self._stream(f"move-{game_id}-{player}-{timestamp}", move),
                self._stream(f"game-{game_id}", moved),
            ],
            [self._event(PLAYER_MOVED_EVENT, game_id)],
        )
        logging.info(f"Game {game_id}: {player} moved in round {round_number}")

        if not moved.has_pending_pair():
            return MoveOutcome(tx_ref=tx_ref)
        # Resolve from the record just written, which holds both choices.
        resolution = await self._resolve(moved)
        return MoveOutcome(
            tx_ref=tx_ref,
            resolution_tx_ref=resolution.tx_ref,
            round_result=resolution.round_result,
            game_end=resolution.game_end,
        )

    async def resolve_pending_round(self, game_id: int) -> RoundResolution | None:
        """Complete a round whose second move was committed but never resolved."""
        game = await self.get_session(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        if not (game.is_active and game.has_pending_pair()):
            return None
        return await self._resolve(game)

    async def _resolve(self, game: GameRecord) -> RoundResolution:
        outcome = resolve_round(
            game.game_type,
            game.players,
            game.stake,
            game.rounds_played,
            game.scores,
            game.choices,
        )
        timestamp = self.clock()
        game_id = game.game_id
        round_result = RoundResultRecord(
            timestamp=timestamp,
            game_id=game_id,
            round_number=outcome.round_number,
            player1_choice=outcome.player1_choice,
            player2_choice=outcome.player2_choice,
            winner_index=outcome.winner_index,
        )
        next_game = game.model_copy(
            update={
                "timestamp": timestamp,
                "rounds_played": outcome.rounds_played,
                "scores": list(outcome.scores),
                "choices": [0, 0],
                "is_active": not outcome.game_over,
                "last_mover": ZERO_ADDRESS,
            }
        )
        records = [
            self._stream(f"round-{game_id}-{outcome.round_number}", round_result),
            self._stream(f"game-{game_id}", next_game),
        ]
        events = [self._event(ROUND_PLAYED_EVENT, game_id)]

        game_end = None
        if outcome.game_over:
            game_end = GameEndRecord(
                timestamp=timestamp,
                game_id=game_id,
                winner=outcome.winner,
                payout=outcome.payout,
                final_scores=list(outcome.scores),
            )
            records.append(self._stream(f"end-{game_id}", game_end))
            events.append(self._event(GAME_ENDED_EVENT, game_id))

        tx_ref = await self._commit(records, events)
        logging.info(
            f"Game {game_id}: round {outcome.round_number} resolved, "
            f"winner_index={outcome.winner_index}, scores={list(outcome.scores)}"
        )
        if game_end is not None:
            logging.info(f"Game {game_id} ended, winner={game_end.winner}, payout={game_end.payout}")
        return RoundResolution(tx_ref=tx_ref, round_result=round_result, game_end=game_end)

    async def get_session(self, game_id: int) -> GameRecord | None:
        rows = await self.ledger.get_by_key(
            self.schema_id(GameRecord), self.publisher_address(), to_bytes32(f"game-{game_id}")
        )
        if not rows:
            return None
        return decode_row(GameRecord, rows[0])

    async def get_game(self, game_id: int) -> GameView | None:
        game = await self.get_session(game_id)
        if game is None:
            return None
        moves = await self._read_moves()
        return self.data_converter.convert_game_to_view(game, moves)

    async def get_player_moves(self, game_id: int, player: str) -> List[int]:
        moves = await self._read_moves()
        return self.data_converter.moves_for_player(moves, game_id, player)

    async def _read_moves(self) -> List[MoveRecord]:
        rows = await self.ledger.get_all_for_schema(
            self.schema_id(MoveRecord), self.publisher_address()
        )
        return decode_rows(MoveRecord, rows)

    async def get_user_games(self, address: str) -> List[int]:
        """Return ids of games the address created or joined, without duplicates."""
        address = address.lower()
        publisher = self.publisher_address()
        created_rows = await self.ledger.get_all_for_schema(
            self.schema_id(GameCreatedRecord), publisher
        )
        joined_rows = await self.ledger.get_all_for_schema(
            self.schema_id(GameJoinedRecord), publisher
        )
        game_ids: List[int] = []
        for created in decode_rows(GameCreatedRecord, created_rows):
            if created.player1 == address and created.game_id not in game_ids:
                game_ids.append(created.game_id)
        for joined in decode_rows(GameJoinedRecord, joined_rows):
            if joined.player2 == address and joined.game_id not in game_ids:
                game_ids.append(joined.game_id)
        return game_ids
