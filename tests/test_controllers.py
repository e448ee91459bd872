import random

import pytest

from liquidity.clock import ENDED, PAUSED, PLAYING
from liquidity.errors import PlayerNotFound
from liquidity.services.games import commands
from liquidity.services.games.controllers import HostController, PlayerController
from liquidity.services.games.script import INTERRUPTS, STORY_PAUSES, ScriptedEventEngine
from liquidity.services.games.views import Snapshot


def _setup(store, names=('Alice', 'Bob')):
    game = commands.create_game(store)
    players = [commands.join_game(store, game['code'], name)[0] for name in names]
    return game, players


def _host(store, game, fake_clock):
    return HostController(store, game['id'], clock_fn=fake_clock,
                          engine=ScriptedEventEngine(rng=random.Random(0))).open()


def _tick_until(controller, fake_clock, predicate, step=0.125, limit=5000):
    for _ in range(limit):
        fake_clock.advance(step)
        view = controller.tick()
        if predicate(view):
            return view
    raise AssertionError('condition never reached')


def _count(store, game_id, event_type):
    return sum(1 for e in store.game_events.list(game_id=game_id) if e['event_type'] == event_type)


def test_host_lobby_view_and_start(store, fake_clock):
    game, _ = _setup(store, names=('Alice',))
    host = _host(store, game, fake_clock)
    view = host.tick()
    assert view.status == 'waiting'
    assert view.player_count == 1
    assert not view.can_start
    assert host.start() is None
    assert host.error.startswith('At least 2 players')

    commands.join_game(store, game['code'], 'Bob')
    view = host.tick()
    assert view.player_count == 2
    assert view.can_start
    assert host.start()['status'] == PLAYING
    assert host.error is None
    host.close()


def test_host_runs_the_full_script_once(store, fake_clock):
    game, _ = _setup(store, names=('Alice', 'Bob', 'Cara'))
    host = _host(store, game, fake_clock)
    host.start()
    gid = game['id']

    # First story pause at one minute; a broadcast went out at 30s
    view = _tick_until(host, fake_clock, lambda v: v.status == PAUSED)
    assert view.elapsed_seconds == 60
    assert view.pause_title == 'The Setup'
    assert view.pause_text == STORY_PAUSES[0].text
    assert _count(store, gid, 'ftx_message') == 1
    assert view.last_broadcast is not None

    # Time spent paused does not count
    fake_clock.advance(20)
    assert host.tick().elapsed_seconds == 60
    assert host.resume()['status'] == PLAYING
    view = host.tick()
    assert view.status == PLAYING
    assert view.elapsed_seconds == 60
    # Ticking the same second again does not pause again
    fake_clock.advance(0.1)
    assert host.tick().status == PLAYING

    # Two minutes: breaking news and the second pause in the same tick
    view = _tick_until(host, fake_clock, lambda v: v.status == PAUSED)
    assert view.elapsed_seconds == 120
    assert view.pause_title == 'The Secret'
    assert view.alert is not None and view.alert.message == INTERRUPTS[0].message
    assert view.alert.shaking
    fake_clock.advance(1)
    view = host.tick()
    assert view.alert is not None and not view.alert.shaking
    fake_clock.advance(8)
    assert host.tick().alert is None
    host.resume()

    view = _tick_until(host, fake_clock, lambda v: v.status == PAUSED)
    assert view.elapsed_seconds == 180
    host.resume()
    view = _tick_until(host, fake_clock, lambda v: v.status == PAUSED)
    assert view.elapsed_seconds == 240
    assert view.phase == 'Crisis'
    host.resume()

    view = _tick_until(host, fake_clock, lambda v: v.status == ENDED)
    assert view.settlement['player_count'] == 3
    assert view.settlement['actual_cash'] == 0.0
    assert view.vault_total == pytest.approx(3 * 400.0)

    for _ in range(20):
        fake_clock.advance(0.1)
        host.tick()
    assert _count(store, gid, 'journalist') == 3
    assert _count(store, gid, 'pause') == 4
    assert _count(store, gid, 'resume') == 4
    assert _count(store, gid, 'game_end') == 1
    # No reassurance broadcasts once the crisis phase began
    crisis_broadcasts = [
        e for e in store.game_events.list(game_id=gid)
        if e['event_type'] == 'ftx_message' and e['created_at'] > _first(store, gid, 'journalist', 2)['created_at']
    ]
    assert crisis_broadcasts == []
    host.close()


def _first(store, game_id, event_type, index=0):
    return [e for e in store.game_events.list(game_id=game_id) if e['event_type'] == event_type][index]


def test_reopened_host_does_not_refire(store, fake_clock):
    game, _ = _setup(store)
    host = _host(store, game, fake_clock)
    host.start()
    _tick_until(host, fake_clock, lambda v: v.status == PAUSED)
    host.close()

    reloaded = _host(store, game, fake_clock)
    assert reloaded.engine.fired_pauses == {60}
    reloaded.resume()
    fake_clock.advance(0.1)
    assert reloaded.tick().status == PLAYING
    assert _count(store, game['id'], 'pause') == 1
    reloaded.close()


def test_player_sees_balance_and_withdraws(store, fake_clock, sleeps):
    game, (alice, bob) = _setup(store)
    host = _host(store, game, fake_clock)
    player = PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock, sleep=sleeps).open()

    view = player.tick()
    assert view.status == 'waiting'
    assert view.balance == 100.0
    assert not view.can_withdraw

    host.start()
    fake_clock.advance(45.05)
    host.tick()
    view = player.tick()
    assert view.status == PLAYING
    assert view.elapsed_seconds == 45
    assert view.balance == pytest.approx(145.0)
    assert view.can_withdraw

    assert player.withdraw()
    view = player.tick()
    assert view.has_withdrawn
    assert view.balance == 0.0
    assert view.withdrawn_amount == pytest.approx(145.0)
    assert sleeps.calls == []
    # Second attempt is ignored locally
    assert not player.withdraw()

    host_view = host.tick()
    assert host_view.withdrawn_count == 1
    assert host_view.active_count == 1
    assert host_view.vault_total == pytest.approx(145.0)
    player.close()
    host.close()


def test_player_withdraw_after_freeze_fails(store, fake_clock, sleeps):
    game, (alice, _) = _setup(store)
    commands.start_game(store, game['id'], now=fake_clock.now)
    player = PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock, sleep=sleeps).open()
    fake_clock.advance(245)

    assert not player.withdraw()
    view = player.tick()
    assert view.withdraw_failed
    assert not view.has_withdrawn
    assert not view.can_withdraw
    assert view.phase == 'Crisis'
    assert not player.withdraw()
    assert sleeps.calls == [3.0, 3.0]
    assert store.players.get(id=alice['id'])['has_withdrawn'] is False
    player.close()


def test_player_follows_pause_and_resume(store, fake_clock):
    game, (alice, _) = _setup(store)
    host = _host(store, game, fake_clock)
    player = PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock).open()
    host.start()
    _tick_until(host, fake_clock, lambda v: v.status == PAUSED)

    view = player.tick()
    assert view.status == PAUSED
    assert view.pause_message == STORY_PAUSES[0].text
    assert view.balance == pytest.approx(160.0)
    assert not view.music_playing

    fake_clock.advance(30)
    assert player.tick().balance == pytest.approx(160.0)
    host.resume()
    view = player.tick()
    assert view.status == PLAYING
    assert view.pause_message is None
    assert view.elapsed_seconds == 60
    player.close()
    host.close()


def test_player_broadcast_banner_expires(store, fake_clock):
    game, (alice, _) = _setup(store)
    commands.start_game(store, game['id'], now=fake_clock.now)
    player = PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock).open()
    commands.log_event(store, game['id'], 'ftx_message', 'Customer funds are always 1:1 backed.', now=fake_clock.now)
    assert player.tick().broadcast == 'Customer funds are always 1:1 backed.'
    fake_clock.advance(10)
    assert player.tick().broadcast is None
    player.close()


def test_player_outcome_after_end(store, fake_clock, sleeps):
    game, (alice, bob) = _setup(store)
    start = fake_clock.now
    game = commands.start_game(store, game['id'], now=start)
    commands.withdraw(store, game, alice, 10, sleep=sleeps)
    commands.end_game(store, game['id'], now=start + 300, elapsed=300)

    with PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock) as escaped:
        view = escaped.tick()
        assert view.outcome == 'escaped'
        assert view.withdrawn_amount == pytest.approx(110.0)
    with PlayerController(store, game['id'], bob['id'], clock_fn=fake_clock) as lost:
        view = lost.tick()
        assert view.outcome == 'lost'
        assert view.balance == pytest.approx(400.0)


def test_close_releases_subscriptions(store, fake_clock):
    game, (alice, _) = _setup(store)
    baseline = store.feed.subscriber_count
    host = _host(store, game, fake_clock)
    player = PlayerController(store, game['id'], alice['id'], clock_fn=fake_clock).open()
    assert store.feed.subscriber_count == baseline + 6
    host.close()
    player.close()
    assert store.feed.subscriber_count == baseline
    assert not host.is_open


def test_unknown_player_is_rejected(store, fake_clock):
    game, _ = _setup(store)
    baseline = store.feed.subscriber_count
    with pytest.raises(PlayerNotFound):
        PlayerController(store, game['id'], 9999, clock_fn=fake_clock).open()
    assert store.feed.subscriber_count == baseline


def test_snapshot_ignores_redelivered_rows(store):
    game, (alice, _) = _setup(store)
    snapshot = Snapshot.load(store, game['id'])
    event = commands.log_event(store, game['id'], 'ftx_message', 'hello')
    once = snapshot.with_row('game_events', event)
    twice = once.with_row('game_events', event)
    assert len(twice.events) == 1
    renamed = dict(alice, name='Alicia')
    assert [p['name'] for p in once.with_row('players', renamed).players] == ['Alicia', 'Bob']
    # Rows for another game are ignored
    assert once.with_row('players', dict(alice, id=777, game_id=game['id'] + 1)) is once


def test_run_loop_stops_when_game_ends(store, fake_clock):
    game, _ = _setup(store)
    commands.start_game(store, game['id'], now=fake_clock.now - 299.5)
    host = _host(store, game, fake_clock)
    ticks = []

    def _on_tick(view):
        ticks.append(view.status)
        fake_clock.advance(0.1)
        if len(ticks) > 200:
            host.stop()

    host.run(interval=0.01, on_tick=_on_tick)
    assert ticks[-1] == ENDED
    assert len(ticks) < 200
    host.close()


def test_late_end_settles_on_the_ending_tick(store, fake_clock):
    game, _ = _setup(store)
    # Nobody hosted for a long time; the game ends on the first tick
    commands.start_game(store, game['id'], now=fake_clock.now - 1000)
    host = _host(store, game, fake_clock)

    view = host.tick()
    assert view.status == ENDED
    assert view.clock == '5:00'
    assert view.vault_total == pytest.approx(2 * 400.0)
    assert [line.balance for line in view.players] == [400.0, 400.0]
    assert isinstance(view.players, tuple)
    assert view.settlement['lost_count'] == 2
    assert view.settlement['total_claims'] == pytest.approx(view.vault_total)
    host.close()
