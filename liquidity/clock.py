"""Game clock and the economic quantities derived from it.

Every viewer recomputes elapsed time from the shared ``started_at`` /
``paused_at`` timestamps on each tick; nothing here keeps state. Timestamps
are epoch seconds (``time.time()``).
"""

import math
from typing import Iterable, Optional

WAITING = 'waiting'
PLAYING = 'playing'
PAUSED = 'paused'
ENDED = 'ended'

PRINCIPAL = 100.0
GROWTH_RATE = 0.01  # per second
FREEZE_THRESHOLD_SEC = 240
GAME_DURATION_SEC = 300

PHASE_NORMAL = 'Normal'
PHASE_CRISIS = 'Crisis'


def derive_elapsed_seconds(status: str, started_at: Optional[float],
                           paused_at: Optional[float], now: float) -> Optional[int]:
    """Whole seconds played so far, or None when the tick should be skipped.

    Only defined while ``status`` is playing. A non-null ``paused_at`` holds
    the value at the pause moment, which covers a viewer that has seen the
    pause but not yet the resume-side shift of ``started_at``.
    """
    if status != PLAYING or started_at is None:
        return None
    paused_delta = (now - paused_at) if paused_at is not None else 0.0
    return max(0, math.floor(now - started_at - paused_delta))


def elapsed_for_display(game: dict, now: float) -> int:
    """Elapsed seconds to show in any status (held while paused, capped once ended)."""
    status = game.get('status')
    started_at = game.get('started_at')
    if status == WAITING or started_at is None:
        return 0
    # A paused game has paused_at set, so the playing formula holds it still
    elapsed = derive_elapsed_seconds(PLAYING, started_at, game.get('paused_at'), now) or 0
    if status == ENDED:
        return min(elapsed, GAME_DURATION_SEC)
    return elapsed


def derive_balance(elapsed: int) -> float:
    return round(PRINCIPAL * (1 + GROWTH_RATE * elapsed), 2)


def player_balance(player: dict, elapsed: int) -> float:
    """Live balance of one player; zero once the player has withdrawn."""
    if player.get('has_withdrawn'):
        return 0.0
    return derive_balance(elapsed)


def active_depositor_count(players: Iterable[dict]) -> int:
    return sum(1 for p in players if not p.get('has_withdrawn'))


def derive_vault_total(active_count: int, elapsed: int) -> float:
    """Displayed vault: every active deposit earning yield at once.

    Deliberately not the sum of real backing.
    """
    return round(active_count * PRINCIPAL * (1 + GROWTH_RATE * elapsed), 2)


def phase_for(elapsed: int) -> str:
    return PHASE_NORMAL if elapsed < FREEZE_THRESHOLD_SEC else PHASE_CRISIS


def withdrawals_frozen(elapsed: int) -> bool:
    return elapsed >= FREEZE_THRESHOLD_SEC


def is_game_over(elapsed: int) -> bool:
    return elapsed >= GAME_DURATION_SEC


def shifted_start(started_at: float, paused_at: float, now: float) -> float:
    """New epoch after a resume: moved forward by exactly the paused duration."""
    return started_at + (now - paused_at)


def format_clock(seconds: int) -> str:
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}"
