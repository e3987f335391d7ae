import pytest
from pydantic import ValidationError as PydanticValidationError

from rps_arena.converter import DataConverter, to_bytes32
from rps_arena.exceptions import ValidationError
from rps_arena.models.dc_models import PayoutResult
from rps_arena.models.schema_models import (
    GameEndRecord,
    GameRecord,
    MoveRecord,
    format_big_int,
    parse_big_int,
)

PLAYER1 = "0x" + "1" * 40
PLAYER2 = "0x" + "2" * 40


def test_big_int_round_trips_exactly_beyond_float_precision():
    value = 2**256 - 1
    text = format_big_int(value)
    assert parse_big_int(text) == value
    assert parse_big_int(" 1900000000000000001 ") == 1_900_000_000_000_000_001


@pytest.mark.parametrize("value", ["1.5", "-3", "0x10", "", True, 2.0, None])
def test_big_int_rejects_non_decimal_values(value):
    with pytest.raises(ValueError):
        parse_big_int(value)


def test_big_int_fields_serialize_as_strings_in_json():
    result = PayoutResult(success=True, game_id=2**200, payout=1_900_000_000_000_000_000)
    dumped = result.model_dump(mode="json", by_alias=True)
    assert dumped["gameId"] == str(2**200)
    assert dumped["payout"] == "1900000000000000000"
    assert PayoutResult.model_validate(dumped).game_id == 2**200


def test_parse_coin_is_exact():
    assert DataConverter.parse_coin("1.0") == 10**18
    assert DataConverter.parse_coin("0.1") == 10**17
    assert DataConverter.parse_coin("12345678901234.000000000000000001") == (
        12345678901234 * 10**18 + 1
    )


@pytest.mark.parametrize("text", ["abc", "-1", "0.0000000000000000001", "NaN", "Infinity"])
def test_parse_coin_rejects_invalid_amounts(text):
    with pytest.raises(ValidationError):
        DataConverter.parse_coin(text)


def test_format_coin():
    assert DataConverter.format_coin(1_900_000_000_000_000_000) == "1.9"
    assert DataConverter.format_coin(2 * 10**18) == "2.0"
    assert DataConverter.format_coin(1) == "0.000000000000000001"


def test_to_bytes32_is_stable_hex():
    key = to_bytes32("game-1")
    assert key == to_bytes32("game-1")
    assert key != to_bytes32("game-2")
    assert key.startswith("0x") and len(key) == 66


def test_game_record_row_layout():
    record = GameRecord(
        timestamp=1700000000000,
        game_id=42,
        player1="0x" + "A" * 40,
        player2=PLAYER2,
        stake=10**18,
        game_type=1,
        rounds_played=2,
        scores=[1, 1],
        choices=[3, 0],
        is_active=True,
        last_mover="0x" + "A" * 40,
    )
    row = record.to_row()
    assert row == [
        1700000000000,
        "42",
        "0x" + "a" * 40,
        PLAYER2,
        "1000000000000000000",
        1,
        2,
        [1, 1],
        [3, 0],
        True,
        "0x" + "a" * 40,
    ]
    assert GameRecord.from_row(row) == record


def test_from_row_rejects_wrong_layout():
    with pytest.raises(ValueError):
        GameEndRecord.from_row([1, "2", PLAYER1])
    with pytest.raises(PydanticValidationError):
        GameEndRecord.from_row([1, "2", "not-an-address", "0", [0, 0]])


def test_game_view_orders_moves_by_round():
    game = GameRecord(
        timestamp=1, game_id=7, player1=PLAYER1, player2=PLAYER2, stake=1, game_type=1
    )
    moves = [
        MoveRecord(timestamp=5, game_id=7, player=PLAYER1, choice=2, round_number=2),
        MoveRecord(timestamp=2, game_id=7, player=PLAYER1, choice=1, round_number=1),
        MoveRecord(timestamp=3, game_id=7, player=PLAYER2, choice=3, round_number=1),
        MoveRecord(timestamp=4, game_id=8, player=PLAYER1, choice=3, round_number=1),
    ]
    view = DataConverter().convert_game_to_view(game, moves)
    assert view.player1_moves == [1, 2]
    assert view.player2_moves == [3]
    assert view.phase.value == "in_progress"
