import hashlib
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import List

from rps_arena.domain.round_rules import session_phase
from rps_arena.exceptions import ValidationError
from rps_arena.models.dc_models import GameView
from rps_arena.models.schema_models import GameRecord, MoveRecord

COIN_DECIMALS = 18
WEI_PER_COIN = 10**COIN_DECIMALS


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def to_bytes32(text: str) -> str:
    """Hash a text key or schema definition into a 32-byte hex id."""
    return "0x" + hashlib.sha256(text.encode("utf-8")).hexdigest()


class DataConverter:
    """This class is used to convert data between ledger rows, amounts and client views."""

    @staticmethod
    def parse_coin(text: str) -> int:
        """Convert a decimal coin string to the smallest unit without rounding.

        Args:
            text (str): Amount in whole coins such as "1.0" or "0.25"
        Returns:
            int: Amount in the smallest unit (10^18 per coin)
        """
        try:
            amount = Decimal(str(text).strip())
        except InvalidOperation:
            raise ValidationError(f"Invalid amount: {text!r}")
        if not amount.is_finite() or amount < 0:
            raise ValidationError(f"Invalid amount: {text!r}")
        with localcontext() as ctx:
            ctx.prec = 100
            scaled = amount.scaleb(COIN_DECIMALS)
        if scaled != scaled.to_integral_value():
            raise ValidationError(f"Amount has more than {COIN_DECIMALS} decimals: {text!r}")
        return int(scaled)

    @staticmethod
    def format_coin(amount: int) -> str:
        whole, fraction = divmod(amount, WEI_PER_COIN)
        if fraction == 0:
            return f"{whole}.0"
        return f"{whole}.{fraction:0{COIN_DECIMALS}d}".rstrip("0")

    @staticmethod
    def timestamp_to_iso(timestamp_ms: int) -> str | None:
        if timestamp_ms <= 0:
            return None
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()

    @staticmethod
    def moves_for_player(moves: List[MoveRecord], game_id: int, player: str) -> List[int]:
        """Return the player's choices in a game ordered by round number."""
        player = player.lower()
        own = [m for m in moves if m.game_id == game_id and m.player == player]
        own.sort(key=lambda m: (m.round_number, m.timestamp))
        return [m.choice for m in own]

    def convert_game_to_view(self, game: GameRecord, moves: List[MoveRecord]) -> GameView:
        player1_moves = self.moves_for_player(moves, game.game_id, game.player1)
        player2_moves = []
        if game.has_opponent():
            player2_moves = self.moves_for_player(moves, game.game_id, game.player2)
        return GameView(
            game=game,
            phase=session_phase(game.player2, game.is_active),
            player1_moves=player1_moves,
            player2_moves=player2_moves,
        )
