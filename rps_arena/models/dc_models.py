from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, RootModel
from pydantic.alias_generators import to_camel

from rps_arena.domain.round_rules import GameType, SessionPhase
from rps_arena.models.schema_models import (
    Address,
    BigInt,
    GameEndRecord,
    GameRecord,
    RoundResultRecord,
)


class ApiModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PayoutFailure(str, Enum):
    ALREADY_EXECUTED = "already_executed"
    NOT_FOUND = "not_found"
    NO_WINNER = "no_winner"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNAVAILABLE = "unavailable"
    LEDGER_ERROR = "ledger_error"
    TIMEOUT = "timeout"
    ERROR = "error"  # anything not mapped above


class PayoutResult(ApiModel):
    success: bool
    game_id: BigInt
    winner: str | None = None
    payout: BigInt | None = None
    tx_ref: str | None = None
    reason: PayoutFailure | None = None
    error: str | None = None


class CreateGameResult(ApiModel):
    game_id: BigInt
    tx_ref: str


class JoinGameResult(ApiModel):
    tx_ref: str


class MoveOutcome(ApiModel):
    tx_ref: str
    resolution_tx_ref: str | None = None
    round_result: RoundResultRecord | None = None
    game_end: GameEndRecord | None = None


class RoundResolution(ApiModel):
    tx_ref: str
    round_result: RoundResultRecord
    game_end: GameEndRecord | None = None


class GameView(ApiModel):
    game: GameRecord
    phase: SessionPhase
    player1_moves: list[int] = []
    player2_moves: list[int] = []


class ListenerStatus(ApiModel):
    is_running: bool
    mode: str | None = None
    last_processed_timestamp: int
    last_processed_date: str | None = None


class CreateGameRequest(ApiModel):
    action: Literal["createGame"]
    game_type: GameType
    stake: str
    player_address: Address


class JoinGameRequest(ApiModel):
    action: Literal["joinGame"]
    game_id: BigInt
    player2_address: Address
    stake: str


class MakeMoveRequest(ApiModel):
    action: Literal["makeMove"]
    game_id: BigInt
    player_address: Address
    choice: int


class GetGameRequest(ApiModel):
    action: Literal["getGame"]
    game_id: BigInt


class GetUserGamesRequest(ApiModel):
    action: Literal["getUserGames"]
    user_address: Address


class GameRequest(RootModel):
    root: Annotated[
        Union[
            CreateGameRequest,
            JoinGameRequest,
            MakeMoveRequest,
            GetGameRequest,
            GetUserGamesRequest,
        ],
        Field(discriminator="action"),
    ]


class ExecutePayoutRequest(ApiModel):
    action: Literal["executePayout"]
    game_id: BigInt


class ProcessAllPayoutsRequest(ApiModel):
    action: Literal["processAllPayouts"]


class GetUnpaidPayoutsRequest(ApiModel):
    action: Literal["getUnpaidPayouts"]


class GetGameEndDataRequest(ApiModel):
    action: Literal["getGameEndData"]
    game_id: BigInt


class StartListenerRequest(ApiModel):
    action: Literal["startListener"]
    mode: Literal["interval", "block"] = "interval"


class StopListenerRequest(ApiModel):
    action: Literal["stopListener"]


class GetListenerStatusRequest(ApiModel):
    action: Literal["getListenerStatus"]


class ResetListenerTimestampRequest(ApiModel):
    action: Literal["resetListenerTimestamp"]


class PayoutRequest(RootModel):
    root: Annotated[
        Union[
            ExecutePayoutRequest,
            ProcessAllPayoutsRequest,
            GetUnpaidPayoutsRequest,
            GetGameEndDataRequest,
            StartListenerRequest,
            StopListenerRequest,
            GetListenerStatusRequest,
            ResetListenerTimestampRequest,
        ],
        Field(discriminator="action"),
    ]
