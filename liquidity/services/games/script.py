"""Scripted narrative beats and the engine that fires them once per run."""

import random
from typing import Iterable, List, NamedTuple, Optional, Set

from liquidity.clock import FREEZE_THRESHOLD_SEC

FTX_MESSAGE = 'ftx_message'
JOURNALIST = 'journalist'
GAME_START = 'game_start'
PAUSE = 'pause'
RESUME = 'resume'
GAME_END = 'game_end'
EVENT_TYPES = (GAME_START, FTX_MESSAGE, JOURNALIST, PAUSE, RESUME, GAME_END)

BROADCAST_MESSAGES = (
    "Yield is up! Your funds are SAFU!",
    "FTX is the most liquid exchange on earth.",
    "We have the best risk management in the industry.",
    "Customer funds are always 1:1 backed.",
    "FTX reserves are fully audited.",
    "Trust the process. Your assets are secure.",
)


class Interrupt(NamedTuple):
    time: int
    message: str


class StoryPause(NamedTuple):
    minute: int
    title: str
    text: str

    @property
    def time(self) -> int:
        return self.minute * 60


INTERRUPTS = (
    Interrupt(120, "BREAKING: Report suggests FTX and Alameda Research are mixing customer funds"),
    Interrupt(180, "ALERT: FTT Token value crashing — down 40% in the last hour"),
    Interrupt(240, "LEAKED: Internal memo reveals 'the vault may be empty'"),
)

STORY_PAUSES = (
    StoryPause(1, "The Setup", "In 2019, Sam Bankman-Fried created FTX, marketed as a safe, regulated exchange. Customers deposited billions, trusting their money was secure."),
    StoryPause(2, "The Secret", "Behind the scenes, FTX secretly funneled customer deposits to Alameda Research — their own trading firm — to make risky bets."),
    StoryPause(3, "The Cracks", "When reporters started asking questions, FTX reassured everyone. But the truth was: customer money had been gambled away."),
    StoryPause(4, "The Run", "Once trust broke, everyone tried to withdraw at once. But the money wasn't there. This is called a 'bank run.'"),
)

INTERRUPT_WINDOW_SEC = 2
ALERT_DISPLAY_SEC = 8.0
ALERT_SHAKE_SEC = 0.5
DEFAULT_BROADCAST_INTERVAL_SEC = 30.0


def story_pause_for(text: str) -> Optional[StoryPause]:
    """Look up the story pause whose explanatory text was logged."""
    for pause in STORY_PAUSES:
        if pause.text == text:
            return pause
    return None


class ScriptedEventEngine:
    """Decides which scripted events are due for a given elapsed value.

    Interrupts fire when elapsed enters ``[time, time + 2)``; story pauses
    only on exact equality. Each fires at most once per run even though the
    tick loop samples the same second many times. A tick that skips a window
    skips the event; there is no catch-up.
    """

    def __init__(self, rng=None, broadcast_interval: float = DEFAULT_BROADCAST_INTERVAL_SEC,
                 interrupts=INTERRUPTS, story_pauses=STORY_PAUSES, messages=BROADCAST_MESSAGES):
        self._rng = rng or random.Random()
        self.broadcast_interval = float(broadcast_interval)
        self.interrupts = tuple(interrupts)
        self.story_pauses = tuple(story_pauses)
        self.messages = tuple(messages)
        self._fired_interrupts: Set[int] = set()
        self._fired_pauses: Set[int] = set()
        self._next_broadcast_at: Optional[float] = None

    def reset(self) -> None:
        self._fired_interrupts.clear()
        self._fired_pauses.clear()
        self._next_broadcast_at = None

    def restore(self, events: Iterable[dict]) -> None:
        """Mark beats already present in the persisted log as fired."""
        for event in events:
            if event.get('event_type') == JOURNALIST:
                for beat in self.interrupts:
                    if beat.message == event.get('message'):
                        self._fired_interrupts.add(beat.time)
            elif event.get('event_type') == PAUSE:
                for pause in self.story_pauses:
                    if pause.text == event.get('message'):
                        self._fired_pauses.add(pause.time)

    @property
    def fired_interrupts(self) -> Set[int]:
        return set(self._fired_interrupts)

    @property
    def fired_pauses(self) -> Set[int]:
        return set(self._fired_pauses)

    def due_broadcast(self, elapsed: int, now: float) -> Optional[str]:
        """Pick a reassurance message when the local interval comes due.

        The interval starts counting on the first unpaused tick and restarts
        after every pause.
        """
        if self._next_broadcast_at is None:
            self._next_broadcast_at = now + self.broadcast_interval
            return None
        if now < self._next_broadcast_at:
            return None
        self._next_broadcast_at = now + self.broadcast_interval
        if elapsed >= FREEZE_THRESHOLD_SEC:
            return None
        return self._rng.choice(self.messages)

    def suspend_broadcasts(self) -> None:
        self._next_broadcast_at = None

    def due_interrupts(self, elapsed: int) -> List[Interrupt]:
        due = []
        for beat in self.interrupts:
            if beat.time in self._fired_interrupts:
                continue
            if beat.time <= elapsed < beat.time + INTERRUPT_WINDOW_SEC:
                self._fired_interrupts.add(beat.time)
                due.append(beat)
        return due

    def due_story_pause(self, elapsed: int, paused: bool) -> Optional[StoryPause]:
        if paused:
            return None
        for pause in self.story_pauses:
            if pause.time == elapsed and pause.time not in self._fired_pauses:
                self._fired_pauses.add(pause.time)
                return pause
        return None
