"""Rock-Paper-Scissors round and game rules that are independent from HTTP and the ledger.

Rule of thumb:
- OK: round outcome, game-over predicate, payout arithmetic, phase derivation.
- Not OK: touching the ledger client, Redis, FastAPI, reading the clock.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum

ZERO_ADDRESS = "0x" + "0" * 40
TIE_INDEX = 255

PAYOUT_BPS = 9500
BPS_DENOMINATOR = 10000


class Choice(IntEnum):
    NONE = 0
    ROCK = 1
    PAPER = 2
    SCISSORS = 3


class GameType(IntEnum):
    SINGLE_ROUND = 0
    BEST_OF_THREE = 1
    BEST_OF_FIVE = 2


class SessionPhase(str, Enum):
    WAITING_FOR_OPPONENT = "waiting_for_opponent"
    IN_PROGRESS = "in_progress"
    CONCLUDED = "concluded"


# key beats value
_BEATS = {
    Choice.ROCK: Choice.SCISSORS,
    Choice.PAPER: Choice.ROCK,
    Choice.SCISSORS: Choice.PAPER,
}

# Score a player must reach to win the game, per multi-round game type.
_WINNING_SCORE = {
    GameType.BEST_OF_THREE: 2,
    GameType.BEST_OF_FIVE: 3,
}


@dataclass(frozen=True)
class RoundOutcome:
    """Result of resolving one complete pair of choices."""

    round_number: int
    player1_choice: int
    player2_choice: int
    winner_index: int
    scores: tuple[int, int]
    rounds_played: int
    game_over: bool
    winner: str | None = None
    payout: int = 0


def is_playable_choice(choice: int) -> bool:
    return choice in (Choice.ROCK, Choice.PAPER, Choice.SCISSORS)


def round_winner(player1_choice: int, player2_choice: int) -> int:
    """Return 0 if player1 wins, 1 if player2 wins, TIE_INDEX on equal choices."""
    if not (is_playable_choice(player1_choice) and is_playable_choice(player2_choice)):
        raise ValueError(
            f"Both choices must be rock, paper or scissors: {player1_choice}, {player2_choice}"
        )
    if player1_choice == player2_choice:
        return TIE_INDEX
    if _BEATS[Choice(player1_choice)] == player2_choice:
        return 0
    return 1


def is_game_over(game_type: int, rounds_played: int, scores: tuple[int, int] | list[int]) -> bool:
    if game_type == GameType.SINGLE_ROUND:
        return rounds_played >= 1
    return max(scores) >= _WINNING_SCORE[GameType(game_type)]


def winner_index_by_score(scores: tuple[int, int] | list[int]) -> int:
    if scores[0] > scores[1]:
        return 0
    if scores[1] > scores[0]:
        return 1
    return TIE_INDEX


def compute_payout(stake: int) -> int:
    """Winner takes both stakes minus a 5% fee, rounded down."""
    return stake * 2 * PAYOUT_BPS // BPS_DENOMINATOR


def resolve_round(
    game_type: int,
    players: tuple[str, str],
    stake: int,
    rounds_played: int,
    scores: tuple[int, int] | list[int],
    choices: tuple[int, int] | list[int],
) -> RoundOutcome:
    """Resolve the pending pair of choices of a session.

    Args:
        game_type (int): GameType of the session
        players (tuple[str, str]): player1 and player2 addresses
        stake (int): Stake per player in the smallest unit
        rounds_played (int): Rounds played before this one
        scores (tuple[int, int]): Scores before this round
        choices (tuple[int, int]): Both pending choices, neither may be NONE
    Returns:
        RoundOutcome: Next scores and round count, and the winner and payout if the game is over
    """
    winner_index = round_winner(choices[0], choices[1])
    next_scores = [scores[0], scores[1]]
    if winner_index != TIE_INDEX:
        next_scores[winner_index] += 1
    next_rounds_played = rounds_played + 1
    game_over = is_game_over(game_type, next_rounds_played, next_scores)

    winner = None
    payout = 0
    if game_over:
        final_index = winner_index_by_score(next_scores)
        if final_index == TIE_INDEX:
            winner = ZERO_ADDRESS
        else:
            winner = players[final_index]
            payout = compute_payout(stake)

    return RoundOutcome(
        round_number=next_rounds_played,
        player1_choice=int(choices[0]),
        player2_choice=int(choices[1]),
        winner_index=winner_index,
        scores=(next_scores[0], next_scores[1]),
        rounds_played=next_rounds_played,
        game_over=game_over,
        winner=winner,
        payout=payout,
    )


def session_phase(player2: str, is_active: bool) -> SessionPhase:
    if not is_active:
        return SessionPhase.CONCLUDED
    if player2.lower() == ZERO_ADDRESS:
        return SessionPhase.WAITING_FOR_OPPONENT
    return SessionPhase.IN_PROGRESS
