import threading
import time
import random
from typing import Dict, Optional

from liquidity import socketio
from liquidity.store import get_store
from .controllers import HostController
from .script import ScriptedEventEngine


_host_loops: Dict[int, HostController] = {}
_stop_deadline: Dict[int, float] = {}
_loops_lock = threading.Lock()


def _claim_host_loop(app, game_id: int) -> Optional[HostController]:
    """Open and register the game's host controller; None if one is already registered."""
    with _loops_lock:
        _stop_deadline.pop(game_id, None)
        if game_id in _host_loops:
            return None
        with app.app_context():
            controller = HostController(
                get_store(app),
                game_id,
                engine=ScriptedEventEngine(
                    rng=random.Random(),
                    broadcast_interval=app.config.get('BROADCAST_INTERVAL_SEC', 30),
                ),
                min_players=int(app.config.get('MIN_PLAYERS', 2)),
            )
            controller.open()
        _host_loops[game_id] = controller
        return controller


def schedule_host_loop(app, game_id: int) -> None:
    """Run the authoritative host tick loop for a game in the background.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single loop per game
    - The loop ends on its own once the game has ended
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    controller = _claim_host_loop(app, game_id)
    if controller is None:
        app.logger.info(f"[host-loop-skip] game={game_id} already running")
        return
    interval = int(app.config.get('TICK_INTERVAL_MS', 100)) / 1000.0
    app.logger.info(f"[host-loop-start] game={game_id} interval={interval}s")

    def _worker(gid: int, ctl: HostController):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        last_beat = [time.time()]

        def _heartbeat(view):
            if hb > 0 and time.time() - last_beat[0] >= hb:
                last_beat[0] = time.time()
                app.logger.info(f"[timer-heartbeat] game={gid} status={view.status} elapsed={view.elapsed_seconds}s")

        with app.app_context():
            try:
                ctl.run(interval, on_tick=_heartbeat)
            except Exception:
                app.logger.exception(f"[host-loop-crash] game={gid}")
            finally:
                ctl.close()
                with _loops_lock:
                    if _host_loops.get(gid) is ctl:
                        _host_loops.pop(gid, None)
                app.logger.info(f"[host-loop-stop] game={gid}")

    socketio.start_background_task(_worker, game_id, controller)


def stop_host_loop(game_id: int) -> bool:
    with _loops_lock:
        controller = _host_loops.pop(game_id, None)
    if controller is None:
        return False
    controller.close()
    return True


def schedule_stop_if_no_host(app, game_id: int, host_count, delay_sec: float = 2.0) -> None:
    """Stop the host loop after a grace period unless a host reconnects."""
    if host_count(game_id) > 0:
        return
    deadline = time.time() + delay_sec
    _stop_deadline[game_id] = deadline

    def _runner(gid: int, dl: float):
        sleep_for = max(0.0, dl - time.time())
        if sleep_for:
            time.sleep(sleep_for)
        if host_count(gid) == 0 and _stop_deadline.get(gid) == dl:
            _stop_deadline.pop(gid, None)
            if stop_host_loop(gid):
                app.logger.info(f"[host-loop-release] game={gid} no host connected")

    socketio.start_background_task(_runner, game_id, deadline)


def cancel_scheduled_stop(game_id: int) -> None:
    _stop_deadline.pop(game_id, None)


def is_host_loop_running(game_id: int) -> bool:
    return game_id in _host_loops
