"""Immutable snapshots of one game and the views derived from them.

Views are rebuilt from ``(snapshot, now)`` on every tick; no derived figure
is carried over from a previous tick.
"""

from dataclasses import asdict, dataclass, replace
from typing import Optional, Tuple

from liquidity import clock
from liquidity.clock import ENDED, PAUSED, PLAYING, WAITING
from liquidity.errors import GameNotFound
from .script import ALERT_DISPLAY_SEC, ALERT_SHAKE_SEC, FTX_MESSAGE, JOURNALIST, PAUSE, story_pause_for
from .settlement import summarize

PLAYER_BROADCAST_DISPLAY_SEC = 10.0


def _row_key(row: dict):
    return (row.get('created_at') or 0.0, row.get('id') or 0)


@dataclass(frozen=True)
class Snapshot:
    game: dict
    players: Tuple[dict, ...] = ()
    events: Tuple[dict, ...] = ()

    @classmethod
    def load(cls, store, game_id: int) -> 'Snapshot':
        game = store.games.get(id=game_id)
        if not game:
            raise GameNotFound()
        return cls(
            game=game,
            players=tuple(store.players.list(game_id=game_id)),
            events=tuple(store.game_events.list(game_id=game_id)),
        )

    def player(self, player_id: int) -> Optional[dict]:
        for p in self.players:
            if p['id'] == player_id:
                return p
        return None

    def with_row(self, table: str, row: dict) -> 'Snapshot':
        """Return a snapshot with ``row`` applied. Re-delivered rows are no-ops."""
        if table == 'games':
            if row.get('id') != self.game.get('id'):
                return self
            return replace(self, game=dict(row))
        if row.get('game_id') != self.game.get('id'):
            return self
        if table == 'players':
            others = [p for p in self.players if p['id'] != row['id']]
            return replace(self, players=tuple(sorted(others + [dict(row)], key=_row_key)))
        if table == 'game_events':
            if any(e['id'] == row['id'] for e in self.events):
                return self
            return replace(self, events=tuple(sorted(self.events + (dict(row),), key=_row_key)))
        return self

    def latest_event(self, event_type: str) -> Optional[dict]:
        for event in reversed(self.events):
            if event['event_type'] == event_type:
                return event
        return None


@dataclass(frozen=True)
class Alert:
    message: str
    shaking: bool


def active_alert(snapshot: Snapshot, now: float) -> Optional[Alert]:
    """Breaking-news alert visible for a fixed time after it was logged."""
    event = snapshot.latest_event(JOURNALIST)
    if not event:
        return None
    age = now - event['created_at']
    if age < 0 or age >= ALERT_DISPLAY_SEC:
        return None
    return Alert(message=event['message'], shaking=age < ALERT_SHAKE_SEC)


@dataclass(frozen=True)
class PlayerLine:
    id: int
    name: str
    balance: float
    has_withdrawn: bool
    withdrawn_amount: float


@dataclass(frozen=True)
class HostView:
    game_id: int
    code: str
    status: str
    elapsed_seconds: int
    clock: str
    phase: str
    vault_total: float
    player_count: int
    withdrawn_count: int
    active_count: int
    can_start: bool
    music_playing: bool
    last_broadcast: Optional[str] = None
    alert: Optional[Alert] = None
    pause_title: Optional[str] = None
    pause_text: Optional[str] = None
    players: Tuple[PlayerLine, ...] = ()
    settlement: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def derive_host_view(snapshot: Snapshot, now: float, min_players: int = 2,
                     error: Optional[str] = None) -> HostView:
    game = snapshot.game
    status = game['status']
    elapsed = clock.elapsed_for_display(game, now)
    active = clock.active_depositor_count(snapshot.players)

    if status == ENDED:
        vault = float(game['total_vault_display'])
    elif status in (PLAYING, PAUSED):
        vault = clock.derive_vault_total(active, elapsed)
    else:
        vault = 0.0

    lines = []
    for p in snapshot.players:
        balance = float(p['balance']) if status in (WAITING, ENDED) else clock.player_balance(p, elapsed)
        lines.append(PlayerLine(p['id'], p['name'], balance, bool(p['has_withdrawn']), float(p['withdrawn_amount'])))

    pause_title = pause_text = None
    if status == PAUSED:
        event = snapshot.latest_event(PAUSE)
        if event:
            pause_text = event['message']
            story = story_pause_for(pause_text)
            pause_title = story.title if story else None

    broadcast = snapshot.latest_event(FTX_MESSAGE)
    return HostView(
        game_id=game['id'],
        code=game['code'],
        status=status,
        elapsed_seconds=elapsed,
        clock=clock.format_clock(elapsed),
        phase=clock.phase_for(elapsed),
        vault_total=vault,
        player_count=len(snapshot.players),
        withdrawn_count=len(snapshot.players) - active,
        active_count=active,
        can_start=status == WAITING and len(snapshot.players) >= min_players,
        music_playing=status == PLAYING,
        last_broadcast=broadcast['message'] if broadcast else None,
        alert=active_alert(snapshot, now) if status in (PLAYING, PAUSED) else None,
        pause_title=pause_title,
        pause_text=pause_text,
        players=tuple(lines),
        settlement=summarize(snapshot.players).to_dict() if status == ENDED else None,
        error=error,
    )


@dataclass(frozen=True)
class PlayerView:
    game_id: int
    player_id: int
    name: str
    status: str
    elapsed_seconds: int
    clock: str
    phase: str
    balance: float
    has_withdrawn: bool
    withdrawn_amount: float
    music_playing: bool
    withdrawing: bool = False
    withdraw_failed: bool = False
    can_withdraw: bool = False
    broadcast: Optional[str] = None
    alert: Optional[Alert] = None
    pause_message: Optional[str] = None
    outcome: Optional[str] = None  # escaped / lost once ended
    error: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def derive_player_view(snapshot: Snapshot, player: dict, now: float, withdrawing: bool = False,
                       withdraw_failed: bool = False, error: Optional[str] = None) -> PlayerView:
    game = snapshot.game
    status = game['status']
    elapsed = clock.elapsed_for_display(game, now)
    withdrawn = bool(player['has_withdrawn'])

    if withdrawn:
        balance = 0.0
    elif status == WAITING:
        balance = clock.PRINCIPAL
    elif status == ENDED:
        balance = float(player['balance'])
    else:
        balance = clock.derive_balance(elapsed)

    broadcast = None
    if status == PLAYING:
        event = snapshot.latest_event(FTX_MESSAGE)
        if event and 0 <= now - event['created_at'] < PLAYER_BROADCAST_DISPLAY_SEC:
            broadcast = event['message']

    pause_message = None
    if status == PAUSED:
        event = snapshot.latest_event(PAUSE)
        pause_message = event['message'] if event else ''

    outcome = None
    if status == ENDED:
        outcome = 'escaped' if withdrawn else 'lost'

    return PlayerView(
        game_id=game['id'],
        player_id=player['id'],
        name=player['name'],
        status=status,
        elapsed_seconds=elapsed,
        clock=clock.format_clock(elapsed),
        phase=clock.phase_for(elapsed),
        balance=balance,
        has_withdrawn=withdrawn,
        withdrawn_amount=float(player['withdrawn_amount']),
        music_playing=status == PLAYING,
        withdrawing=withdrawing,
        withdraw_failed=withdraw_failed,
        can_withdraw=status == PLAYING and not withdrawn and not withdrawing and not withdraw_failed,
        broadcast=broadcast,
        alert=active_alert(snapshot, now) if status in (PLAYING, PAUSED) else None,
        pause_message=pause_message,
        outcome=outcome,
        error=error,
    )
