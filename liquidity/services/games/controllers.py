"""Host and player controllers.

A controller loads one game from the store, subscribes to the change feed
and then recomputes its view on a local timer. Feed callbacks only put
changes on the controller's inbox; ``run`` is the single loop that applies
them and ticks, so the snapshot is never touched from two threads.
"""

import logging
import queue
import time
from typing import List, Optional

from liquidity import clock
from liquidity.clock import PAUSED
from liquidity.errors import GameError, PlayerNotFound, WithdrawalsFrozen
from liquidity.feed import ChangeEvent, INSERT, Subscription
from . import commands
from .script import FTX_MESSAGE, JOURNALIST, ScriptedEventEngine
from .views import Snapshot, derive_host_view, derive_player_view

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_SEC = 0.1


class GameController:
    def __init__(self, store, game_id: int, clock_fn=time.time):
        self.store = store
        self.game_id = game_id
        self._clock = clock_fn
        self._inbox: 'queue.Queue[ChangeEvent]' = queue.Queue()
        self._subscriptions: List[Subscription] = []
        self._running = False
        self.snapshot: Optional[Snapshot] = None
        self.view = None
        self.error: Optional[str] = None
        self.last_failure: Optional[GameError] = None

    # -- lifecycle -------------------------------------------------------
    def _subscribe(self) -> List[Subscription]:
        feed = self.store.feed
        return [
            feed.subscribe('games', None, {'id': self.game_id}, self._inbox.put),
            feed.subscribe('players', None, {'game_id': self.game_id}, self._inbox.put),
            feed.subscribe('game_events', [INSERT], {'game_id': self.game_id}, self._inbox.put),
        ]

    def open(self):
        self._subscriptions = self._subscribe()
        try:
            self.snapshot = Snapshot.load(self.store, self.game_id)
        except GameError:
            self.close()
            raise
        return self

    def close(self) -> None:
        """Release the feed subscriptions and stop the tick loop."""
        self._running = False
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions)

    # -- change handling -------------------------------------------------
    def _apply(self, table: str, row: Optional[dict]) -> None:
        if row is not None and self.snapshot is not None:
            self.snapshot = self.snapshot.with_row(table, row)

    def pump(self) -> int:
        """Apply every change waiting on the inbox. Returns how many were applied."""
        applied = 0
        while True:
            try:
                change = self._inbox.get_nowait()
            except queue.Empty:
                return applied
            self._apply(change.table, change.row)
            applied += 1

    def _command(self, fn, *args, table: str = 'games', **kwargs):
        """Run a command, applying its confirmed row; failures become ``error``."""
        try:
            row = fn(self.store, *args, **kwargs)
        except GameError as exc:
            self.error = exc.message
            self.last_failure = exc
            logger.info(f"[command-failed] game={self.game_id} command={fn.__name__} error={exc.message!r}")
            return None
        self.error = None
        self.last_failure = None
        self._apply(table, row)
        return row

    # -- loop --------------------------------------------------------------
    def tick(self, now: Optional[float] = None):
        raise NotImplementedError

    def _finished(self) -> bool:
        return False

    def run(self, interval: float = DEFAULT_TICK_INTERVAL_SEC, on_tick=None) -> None:
        """Select between the inbox and the tick timer until stopped.

        Changes are applied as soon as they arrive; ticks happen every
        ``interval`` seconds. A late tick is not replayed, the next one
        simply recomputes from the timestamps.
        """
        self._running = True
        next_tick = self._clock()
        while self._running:
            timeout = max(0.0, next_tick - self._clock())
            try:
                change = self._inbox.get(timeout=timeout)
            except queue.Empty:
                pass
            else:
                self._apply(change.table, change.row)
                if self._clock() < next_tick:
                    continue
            view = self.tick()
            if on_tick is not None:
                on_tick(view)
            next_tick = max(next_tick + interval, self._clock())
            if self._finished():
                self._running = False

    def stop(self) -> None:
        self._running = False


class HostController(GameController):
    """Drives the shared script: broadcasts, interrupts, story pauses and the end."""

    def __init__(self, store, game_id: int, clock_fn=time.time, engine: Optional[ScriptedEventEngine] = None,
                 min_players: int = 2):
        super().__init__(store, game_id, clock_fn)
        self.engine = engine or ScriptedEventEngine()
        self.min_players = min_players
        self._end_requested = False

    def open(self):
        super().open()
        self.engine.restore(self.snapshot.events)
        return self

    def start(self, now: Optional[float] = None):
        now = self._clock() if now is None else now
        return self._command(commands.start_game, self.game_id, now=now, min_players=self.min_players)

    def resume(self, now: Optional[float] = None):
        now = self._clock() if now is None else now
        return self._command(commands.resume_game, self.game_id, now=now)

    def tick(self, now: Optional[float] = None):
        now = self._clock() if now is None else now
        self.pump()
        game = self.snapshot.game
        elapsed = clock.derive_elapsed_seconds(game['status'], game['started_at'], game['paused_at'], now)
        if elapsed is None:
            if game['status'] == PAUSED:
                self.engine.suspend_broadcasts()
        elif clock.is_game_over(elapsed):
            self._end(now, elapsed)
        else:
            self._run_script(elapsed, now)
        # Pick up rows the commands above published
        self.pump()
        self.view = derive_host_view(self.snapshot, now, min_players=self.min_players, error=self.error)
        return self.view

    def _run_script(self, elapsed: int, now: float) -> None:
        message = self.engine.due_broadcast(elapsed, now)
        if message:
            self._command(commands.log_event, self.game_id, FTX_MESSAGE, message, now=now, table='game_events')
        for beat in self.engine.due_interrupts(elapsed):
            logger.info(f"[interrupt] game={self.game_id} elapsed={elapsed} t={beat.time}")
            self._command(commands.log_event, self.game_id, JOURNALIST, beat.message, now=now, table='game_events')
        story = self.engine.due_story_pause(elapsed, paused=self.snapshot.game['status'] == PAUSED)
        if story:
            self.engine.suspend_broadcasts()
            self._command(commands.pause_game, self.game_id, story.text, now=now)

    def _end(self, now: float, elapsed: int) -> None:
        if self._end_requested:
            return
        self._end_requested = True
        self._command(commands.end_game, self.game_id, now=now, elapsed=elapsed)

    def _finished(self) -> bool:
        return self.snapshot is not None and self.snapshot.game['status'] == clock.ENDED


class PlayerController(GameController):
    """One participant's view of the game plus the withdraw command."""

    def __init__(self, store, game_id: int, player_id: int, clock_fn=time.time, sleep=time.sleep,
                 freeze_delay: float = commands.WITHDRAW_FREEZE_DELAY_SEC):
        super().__init__(store, game_id, clock_fn)
        self.player_id = player_id
        self._sleep = sleep
        self.freeze_delay = freeze_delay
        self.withdrawing = False
        self.withdraw_failed = False

    def _subscribe(self) -> List[Subscription]:
        feed = self.store.feed
        return [
            feed.subscribe('games', None, {'id': self.game_id}, self._inbox.put),
            feed.subscribe('players', None, {'id': self.player_id}, self._inbox.put),
            feed.subscribe('game_events', [INSERT], {'game_id': self.game_id}, self._inbox.put),
        ]

    def open(self):
        super().open()
        if self.player is None:
            self.close()
            raise PlayerNotFound()
        return self

    @property
    def player(self) -> Optional[dict]:
        return self.snapshot.player(self.player_id) if self.snapshot else None

    def elapsed(self, now: Optional[float] = None) -> Optional[int]:
        now = self._clock() if now is None else now
        game = self.snapshot.game
        return clock.derive_elapsed_seconds(game['status'], game['started_at'], game['paused_at'], now)

    def tick(self, now: Optional[float] = None):
        now = self._clock() if now is None else now
        self.pump()
        self.view = derive_player_view(
            self.snapshot, self.player, now,
            withdrawing=self.withdrawing,
            withdraw_failed=self.withdraw_failed,
            error=self.error,
        )
        return self.view

    def withdraw(self, now: Optional[float] = None) -> bool:
        """Attempt the one-time withdrawal. Returns True on success."""
        self.pump()
        player = self.player
        if player is None or player['has_withdrawn'] or self.withdrawing:
            return False
        self.withdrawing = True
        try:
            row = self._command(
                commands.withdraw, self.snapshot.game, player, self.elapsed(now),
                sleep=self._sleep, freeze_delay=self.freeze_delay, table='players',
            )
        finally:
            self.withdrawing = False
        if row is None:
            if isinstance(self.last_failure, WithdrawalsFrozen):
                self.withdraw_failed = True
            return False
        return True
