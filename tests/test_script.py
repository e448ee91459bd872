import random

from liquidity.services.games.script import (
    BROADCAST_MESSAGES,
    INTERRUPTS,
    JOURNALIST,
    PAUSE,
    STORY_PAUSES,
    ScriptedEventEngine,
    story_pause_for,
)

T0 = 1_700_000_000.0


def _sample_ticks(engine, start, stop):
    """Sample every 100ms between two elapsed values, collecting what fires."""
    fired = []
    for step in range(start * 10, stop * 10):
        fired.extend(engine.due_interrupts(step // 10))
    return fired


def test_interrupts_fire_once_across_their_window():
    engine = ScriptedEventEngine(rng=random.Random(1))
    fired = _sample_ticks(engine, 0, 300)
    assert [beat.time for beat in fired] == [120, 180, 240]
    # Sampling the windows again does not re-fire
    assert _sample_ticks(engine, 118, 245) == []


def test_interrupt_window_is_half_open():
    engine = ScriptedEventEngine()
    assert engine.due_interrupts(119) == []
    assert engine.due_interrupts(122) == []
    assert [b.time for b in engine.due_interrupts(121)] == [120]


def test_skipped_window_is_not_caught_up():
    engine = ScriptedEventEngine()
    assert engine.due_interrupts(119) == []
    assert engine.due_interrupts(125) == []
    assert 120 not in engine.fired_interrupts


def test_story_pause_requires_exact_second_and_fires_once():
    engine = ScriptedEventEngine()
    assert engine.due_story_pause(59, paused=False) is None
    pause = engine.due_story_pause(60, paused=False)
    assert pause.title == 'The Setup'
    # Same second sampled again after a resume
    assert engine.due_story_pause(60, paused=False) is None
    assert engine.due_story_pause(61, paused=False) is None
    assert engine.fired_pauses == {60}


def test_story_pause_skipped_while_paused():
    engine = ScriptedEventEngine()
    assert engine.due_story_pause(120, paused=True) is None
    assert engine.due_story_pause(120, paused=False).title == 'The Secret'


def test_broadcast_interval_and_freeze_cutoff():
    engine = ScriptedEventEngine(rng=random.Random(7), broadcast_interval=30)
    assert engine.due_broadcast(0, T0) is None  # arms the interval
    assert engine.due_broadcast(29, T0 + 29.9) is None
    message = engine.due_broadcast(30, T0 + 30)
    assert message in BROADCAST_MESSAGES
    assert engine.due_broadcast(31, T0 + 31) is None
    # Interval comes due in the crisis phase: nothing is broadcast
    assert engine.due_broadcast(240, T0 + 60) is None


def test_broadcast_interval_restarts_after_pause():
    engine = ScriptedEventEngine(rng=random.Random(3), broadcast_interval=30)
    engine.due_broadcast(0, T0)
    engine.suspend_broadcasts()
    assert engine.due_broadcast(45, T0 + 45) is None
    assert engine.due_broadcast(60, T0 + 60) is None
    assert engine.due_broadcast(75, T0 + 75) in BROADCAST_MESSAGES


def test_restore_marks_persisted_beats_as_fired():
    engine = ScriptedEventEngine()
    engine.restore([
        {'event_type': JOURNALIST, 'message': INTERRUPTS[0].message},
        {'event_type': PAUSE, 'message': STORY_PAUSES[0].text},
        {'event_type': 'ftx_message', 'message': BROADCAST_MESSAGES[0]},
    ])
    assert engine.due_interrupts(120) == []
    assert engine.due_story_pause(60, paused=False) is None
    assert engine.due_story_pause(120, paused=False).minute == 2


def test_reset_starts_a_new_run():
    engine = ScriptedEventEngine()
    engine.due_interrupts(120)
    engine.due_story_pause(60, paused=False)
    engine.reset()
    assert engine.fired_interrupts == set()
    assert engine.due_story_pause(60, paused=False) is not None


def test_story_pause_lookup_by_text():
    assert story_pause_for(STORY_PAUSES[3].text).title == 'The Run'
    assert story_pause_for('something else') is None
