from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import StrEnum

from arcade.errors import InvalidInput

XP_PER_LEVEL = 100


def compute_level(xp: int) -> int:
    """Level for a given xp total.

    This is the only place levels are derived; both the stored user view and
    reward application go through it.
    """

    if xp < 0:
        raise InvalidInput("xp must be >= 0")
    return xp // XP_PER_LEVEL + 1


def compute_purchase(balance: int, price: int) -> tuple[bool, int]:
    if price <= 0:
        raise InvalidInput("price must be positive")
    if balance >= price:
        return True, balance - price
    return False, balance


def compute_game_delta(coins_earned: int, current_coins: int) -> int:
    # Penalties (e.g. a lost slot wager) never drive the balance negative.
    return max(0, current_coins + coins_earned)


class GameName(StrEnum):
    rps = "rps"
    number = "number"
    slots = "slots"
    memory = "memory"


# Games the server can resolve from a single move. Memory is pure client skill.
SERVER_RESOLVED_GAMES = frozenset({GameName.rps, GameName.number, GameName.slots})

RPS_MOVES = ("rock", "paper", "scissors")
_RPS_BEATS = {"rock": "scissors", "paper": "rock", "scissors": "paper"}

NUMBER_MIN = 1
NUMBER_MAX = 10

SLOT_SYMBOLS = ("cherry", "lemon", "star", "diamond", "seven")
SLOT_WAGER = 10
SLOT_JACKPOT = 1000
SLOT_PAYOUT = 100


@dataclass(frozen=True, slots=True)
class Outcome:
    won: bool
    coins: int
    xp: int
    detail: dict[str, object] = field(default_factory=dict)


def _play_rps(move: str, rng: random.Random) -> Outcome:
    move = move.strip().lower()
    if move not in _RPS_BEATS:
        raise InvalidInput(f"move must be one of {', '.join(RPS_MOVES)}")

    bot = rng.choice(RPS_MOVES)
    if move == bot:
        return Outcome(won=False, coins=0, xp=0, detail={"bot": bot, "result": "draw"})
    if _RPS_BEATS[move] == bot:
        return Outcome(won=True, coins=10, xp=5, detail={"bot": bot, "result": "win"})
    return Outcome(won=False, coins=0, xp=0, detail={"bot": bot, "result": "loss"})


def _play_number(move: str, rng: random.Random) -> Outcome:
    try:
        guess = int(move)
    except ValueError as e:
        raise InvalidInput("guess must be an integer") from e
    if not NUMBER_MIN <= guess <= NUMBER_MAX:
        raise InvalidInput(f"guess must be between {NUMBER_MIN} and {NUMBER_MAX}")

    target = rng.randint(NUMBER_MIN, NUMBER_MAX)
    if guess == target:
        return Outcome(won=True, coins=20, xp=10, detail={"target": target})
    hint = "higher" if guess < target else "lower"
    return Outcome(won=False, coins=0, xp=0, detail={"target": target, "hint": hint})


def _play_slots(rng: random.Random) -> Outcome:
    reels = [rng.choice(SLOT_SYMBOLS) for _ in range(3)]
    if reels[0] == reels[1] == reels[2]:
        payout = SLOT_JACKPOT if reels[0] == "seven" else SLOT_PAYOUT
        return Outcome(won=True, coins=payout - SLOT_WAGER, xp=20, detail={"reels": reels})
    return Outcome(won=False, coins=-SLOT_WAGER, xp=0, detail={"reels": reels})


def play_game(game: GameName | str, move: str = "", *, rng: random.Random | None = None) -> Outcome:
    """Resolve one round on the server and return the reward it earns."""

    try:
        name = GameName(game)
    except ValueError as e:
        raise InvalidInput(f"Unknown game: {game}") from e
    if name not in SERVER_RESOLVED_GAMES:
        raise InvalidInput(f"{name.value} results are reported by the client")

    rng = rng or random.SystemRandom()
    if name == GameName.rps:
        return _play_rps(move, rng)
    if name == GameName.number:
        return _play_number(move, rng)
    return _play_slots(rng)
