"""Game commands: every mutation of games, players and the event log.

Commands validate against the rows they are given or read, write through
the store, and raise ``GameError`` subclasses. Storage failures surface as
``CommandFailed('Failed to <command>')``; nothing is retried.
"""

import functools
import logging
import threading
import time
from typing import Optional, Set, Tuple

from liquidity import clock
from liquidity.clock import ENDED, PAUSED, PLAYING, WAITING
from liquidity.errors import (
    AlreadyWithdrawn,
    CommandFailed,
    GameNotFound,
    InvalidTransition,
    PlayerNotFound,
    StoreError,
    ValidationError,
    WithdrawInFlight,
    WithdrawalsFrozen,
)
from liquidity.models import generate_join_code
from .script import EVENT_TYPES, GAME_END, GAME_START, PAUSE, RESUME
from .settlement import settle_players

logger = logging.getLogger(__name__)

WITHDRAW_FREEZE_DELAY_SEC = 3.0

_withdrawals_in_flight: Set[int] = set()
_in_flight_lock = threading.Lock()


def command(label: str):
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except StoreError as exc:
                logger.error(f"[store-failure] command={label} error={exc}")
                raise CommandFailed(f"Failed to {label}") from exc
        return wrapper
    return decorator


def _load_game(store, game_id: int) -> dict:
    game = store.games.get(id=game_id)
    if not game:
        raise GameNotFound()
    return game


def _append_event(store, game_id: int, event_type: str, message: str, now: Optional[float] = None) -> dict:
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"Unknown event type: {event_type}")
    return store.game_events.insert(
        game_id=game_id,
        event_type=event_type,
        message=message,
        created_at=time.time() if now is None else now,
    )


@command('log event')
def log_event(store, game_id: int, event_type: str, message: str, now: Optional[float] = None) -> dict:
    return _append_event(store, game_id, event_type, message, now=now)


@command('create game')
def create_game(store) -> dict:
    game = store.games.insert(code=generate_join_code(), status=WAITING)
    logger.info(f"[game-create] game={game['id']} code={game['code']}")
    return game


@command('join game')
def join_game(store, code: Optional[str], name: Optional[str],
              existing_player_id: Optional[int] = None) -> Tuple[dict, bool]:
    """Join by code. Returns ``(player, created)``.

    A browser session that already holds a player for this game is
    reattached to that row instead of creating a new one.
    """
    clean_code = (code or '').strip().upper()
    clean_name = (name or '').strip()
    if not clean_code or not clean_name:
        raise ValidationError('Enter game code and your name')

    matches = store.games.list(code=clean_code)
    if not matches:
        raise GameNotFound()
    # Codes are not unique; the newest game wins
    game = matches[-1]

    if existing_player_id:
        existing = store.players.get(id=existing_player_id, game_id=game['id'])
        if existing:
            return existing, False

    player = store.players.insert(
        game_id=game['id'],
        name=clean_name,
        role='customer',
        balance=clock.PRINCIPAL,
    )
    logger.info(f"[join] game={game['id']} player={player['id']} name={clean_name!r}")
    return player, True


@command('start game')
def start_game(store, game_id: int, now: Optional[float] = None, min_players: int = 2) -> dict:
    now = time.time() if now is None else now
    game = _load_game(store, game_id)
    if game['status'] in (PLAYING, PAUSED):
        # Idempotent start: already started
        return game
    if game['status'] != WAITING:
        raise InvalidTransition('Game has already ended')

    players = store.players.list(game_id=game_id)
    if len(players) < min_players:
        raise ValidationError(f'At least {min_players} players are required to start')

    row = store.games.update({'id': game_id, 'status': WAITING}, status=PLAYING, started_at=now)
    if row is None:
        return _load_game(store, game_id)
    _append_event(store, game_id, GAME_START, 'Game has started!', now=now)
    logger.info(f"[game-start] game={game_id} players={len(players)} started_at={now}")
    return row


@command('pause game')
def pause_game(store, game_id: int, message: str, now: Optional[float] = None) -> dict:
    now = time.time() if now is None else now
    game = _load_game(store, game_id)
    if game['status'] != PLAYING:
        raise InvalidTransition('Game is not playing')
    row = store.games.update({'id': game_id, 'status': PLAYING}, status=PAUSED, paused_at=now)
    if row is None:
        raise InvalidTransition('Game is not playing')
    _append_event(store, game_id, PAUSE, message, now=now)
    logger.info(f"[pause] game={game_id} paused_at={now}")
    return row


@command('resume game')
def resume_game(store, game_id: int, now: Optional[float] = None) -> dict:
    now = time.time() if now is None else now
    game = _load_game(store, game_id)
    if game['status'] != PAUSED or game['paused_at'] is None or game['started_at'] is None:
        raise InvalidTransition('Game is not paused')
    new_started_at = clock.shifted_start(game['started_at'], game['paused_at'], now)
    row = store.games.update(
        {'id': game_id, 'status': PAUSED},
        status=PLAYING,
        paused_at=None,
        started_at=new_started_at,
    )
    if row is None:
        raise InvalidTransition('Game is not paused')
    _append_event(store, game_id, RESUME, 'Game resumed', now=now)
    logger.info(f"[resume] game={game_id} paused_for={now - game['paused_at']:.3f}s started_at={new_started_at}")
    return row


@command('end game')
def end_game(store, game_id: int, now: Optional[float] = None, elapsed: Optional[int] = None) -> Optional[dict]:
    """End the game and settle every player. Returns None if already ended."""
    now = time.time() if now is None else now
    game = _load_game(store, game_id)
    if game['status'] == ENDED:
        return None
    if game['status'] == WAITING:
        raise InvalidTransition('Game has not started')
    if elapsed is None:
        elapsed = clock.elapsed_for_display(game, now)
    # A late end still settles at the final second
    elapsed = min(elapsed, clock.GAME_DURATION_SEC)

    players = store.players.list(game_id=game_id)
    vault = clock.derive_vault_total(clock.active_depositor_count(players), elapsed)
    row = store.games.update(
        {'id': game_id, 'status': game['status']},
        status=ENDED,
        paused_at=None,
        total_vault_display=vault,
        actual_vault=0.0,
    )
    if row is None:
        return None
    settle_players(store, game_id, elapsed)
    _append_event(store, game_id, GAME_END, 'FTX has filed for bankruptcy.', now=now)
    logger.info(f"[game-end] game={game_id} elapsed={elapsed} vault_display={vault}")
    return row


@command('withdraw')
def withdraw(store, game: dict, player: dict, elapsed: Optional[int],
             sleep=time.sleep, freeze_delay: float = WITHDRAW_FREEZE_DELAY_SEC) -> dict:
    """Withdraw the player's whole balance at ``elapsed``.

    From the freeze threshold on, the request waits ``freeze_delay`` seconds
    and then always fails without touching the store.
    """
    if player.get('game_id') != game.get('id'):
        raise PlayerNotFound()
    if game['status'] != PLAYING or elapsed is None:
        raise InvalidTransition('Withdrawals are only possible while the game is running')
    if player['has_withdrawn']:
        raise AlreadyWithdrawn()

    player_id = player['id']
    with _in_flight_lock:
        if player_id in _withdrawals_in_flight:
            raise WithdrawInFlight()
        _withdrawals_in_flight.add(player_id)
    try:
        if clock.withdrawals_frozen(elapsed):
            logger.info(f"[withdraw] game={game['id']} player={player_id} elapsed={elapsed} frozen, delaying {freeze_delay}s")
            sleep(freeze_delay)
            raise WithdrawalsFrozen()
        amount = clock.derive_balance(elapsed)
        row = store.players.update(
            {'id': player_id, 'has_withdrawn': False},
            has_withdrawn=True,
            withdrawn_amount=amount,
            balance=0.0,
        )
        if row is None:
            raise AlreadyWithdrawn()
        logger.info(f"[withdraw] game={game['id']} player={player_id} elapsed={elapsed} amount={amount}")
        return row
    finally:
        with _in_flight_lock:
            _withdrawals_in_flight.discard(player_id)
