import re
from typing import Annotated, Any, ClassVar

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from rps_arena.domain.round_rules import ZERO_ADDRESS

_DECIMAL_PATTERN = re.compile(r"^[0-9]+$")
_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def parse_big_int(value: Any) -> int:
    """Parse a non-negative integer given as int or decimal string.

    Args:
        value (Any): int or decimal string such as "1900000000000000000"
    Returns:
        int: Exact integer value
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a valid integer amount")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Negative integer is not allowed: {value}")
        return value
    if isinstance(value, str):
        text = value.strip()
        if not _DECIMAL_PATTERN.match(text):
            raise ValueError(f"Not a decimal integer string: {value!r}")
        return int(text)
    raise ValueError(f"Unsupported integer value: {value!r}")


def format_big_int(value: int) -> str:
    return str(value)


def parse_address(value: str) -> str:
    if not isinstance(value, str) or not _ADDRESS_PATTERN.match(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


BigInt = Annotated[
    int,
    BeforeValidator(parse_big_int),
    PlainSerializer(format_big_int, return_type=str, when_used="json"),
]
Address = Annotated[str, AfterValidator(parse_address)]
Pair = Annotated[list[int], Field(min_length=2, max_length=2)]


class TransactionReceiptSchema(BaseModel):
    tx_ref: str
    block_number: int
    sender: str | None = None
    kind: str | None = None
    status: str

    class Config:
        from_attributes = True


class LedgerSchemaSchema(BaseModel):
    schema_id: str
    schema_name: str
    definition: str
    registered_by: str | None = None
    block_number: int | None = None

    class Config:
        from_attributes = True


class LedgerRecordSchema(BaseModel):
    schema_id: str
    publisher: str
    data_key: str
    data: list
    block_number: int

    class Config:
        from_attributes = True


class DataStream(BaseModel):
    """One keyed record to be written by a ledger transaction."""

    schema_id: str
    data_key: str
    data: list


class EventStream(BaseModel):
    event_name: str
    topics: list[str] = []
    data: list = []


class LedgerRow(BaseModel):
    """Typed ledger record; field order is the stored row layout."""

    schema_name: ClassVar[str]
    definition: ClassVar[str]

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_row(self) -> list:
        return list(self.model_dump(mode="json").values())

    @classmethod
    def from_row(cls, row: list):
        fields = list(cls.model_fields)
        if len(row) != len(fields):
            raise ValueError(
                f"{cls.schema_name} row has {len(row)} values, expected {len(fields)}"
            )
        return cls.model_validate(dict(zip(fields, row)))


class GameRecord(LedgerRow):
    schema_name: ClassVar[str] = "game"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, address player1, address player2, "
        "uint256 stake, uint8 gameType, uint8 roundsPlayed, uint8[2] scores, "
        "uint8[2] currentChoices, bool isActive, address lastPlayerMove"
    )

    timestamp: int
    game_id: BigInt
    player1: Address
    player2: Address = ZERO_ADDRESS
    stake: BigInt
    game_type: int
    rounds_played: int = 0
    scores: Pair = [0, 0]
    choices: Pair = [0, 0]
    is_active: bool = True
    last_mover: Address = ZERO_ADDRESS

    @property
    def players(self) -> tuple[str, str]:
        return (self.player1, self.player2)

    def has_opponent(self) -> bool:
        return self.player2 != ZERO_ADDRESS

    def player_index(self, address: str) -> int | None:
        address = address.lower()
        if address == self.player1:
            return 0
        if self.has_opponent() and address == self.player2:
            return 1
        return None

    def has_pending_pair(self) -> bool:
        return self.choices[0] != 0 and self.choices[1] != 0


class GameCreatedRecord(LedgerRow):
    schema_name: ClassVar[str] = "gameCreated"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, address player1, uint256 stake, uint8 gameType"
    )

    timestamp: int
    game_id: BigInt
    player1: Address
    stake: BigInt
    game_type: int


class GameJoinedRecord(LedgerRow):
    schema_name: ClassVar[str] = "gameJoined"
    definition: ClassVar[str] = "uint64 timestamp, uint256 gameId, address player2"

    timestamp: int
    game_id: BigInt
    player2: Address


class MoveRecord(LedgerRow):
    schema_name: ClassVar[str] = "move"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, address player, uint8 choice, uint8 roundNumber"
    )

    timestamp: int
    game_id: BigInt
    player: Address
    choice: int
    round_number: int


class RoundResultRecord(LedgerRow):
    schema_name: ClassVar[str] = "roundResult"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, uint8 roundNumber, uint8 player1Choice, "
        "uint8 player2Choice, uint8 winnerIndex"
    )

    timestamp: int
    game_id: BigInt
    round_number: int
    player1_choice: int
    player2_choice: int
    winner_index: int


class GameEndRecord(LedgerRow):
    schema_name: ClassVar[str] = "gameEnd"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, address winner, uint256 payout, uint8[2] finalScores"
    )

    timestamp: int
    game_id: BigInt
    # ZERO_ADDRESS here means no winner, not an empty slot.
    winner: Address
    payout: BigInt
    final_scores: Pair

    def has_winner(self) -> bool:
        return self.winner != ZERO_ADDRESS and self.payout > 0


class PayoutReceiptRecord(LedgerRow):
    schema_name: ClassVar[str] = "payoutExecuted"
    definition: ClassVar[str] = (
        "uint64 timestamp, uint256 gameId, address winner, uint256 payout, bytes32 txHash"
    )

    timestamp: int
    game_id: BigInt
    winner: Address
    payout: BigInt
    tx_ref: str


GAME_SCHEMAS: list[type[LedgerRow]] = [
    GameRecord,
    GameCreatedRecord,
    GameJoinedRecord,
    MoveRecord,
    RoundResultRecord,
    GameEndRecord,
]
PAYOUT_SCHEMAS: list[type[LedgerRow]] = [PayoutReceiptRecord]
