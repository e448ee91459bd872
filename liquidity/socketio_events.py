from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from liquidity import socketio
from liquidity.clock import PAUSED, PLAYING
from liquidity.feed import ALL_KINDS, ChangeEvent, ChangeFeed
from liquidity.store import get_store
from liquidity.services.games.scheduler import (
    cancel_scheduled_stop,
    schedule_host_loop,
    schedule_stop_if_no_host,
    stop_host_loop,
)
from typing import Dict, Any

RELAYED_TABLES = ('games', 'players', 'game_events')


def room_for(game_id: int) -> str:
    return f"game:{game_id}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def _release_host(game_id: int) -> None:
    """Drop one host presence for a game; the loop goes once none remain."""
    _host_count[game_id] = max(0, _host_count.get(game_id, 0) - 1)
    if current_app.config.get('TESTING'):
        if _host_count.get(game_id, 0) == 0:
            stop_host_loop(game_id)
        return
    schedule_stop_if_no_host(
        current_app._get_current_object(),
        game_id,
        lambda gid: _host_count.get(gid, 0),
        delay_sec=float(current_app.config.get('HOST_GRACE_SEC', 2.0)),
    )


def handle_disconnect(*args):
    # If this socket was the last host of a game, release the host loop
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    game_id = ctx.get('game_id')
    if ctx.get('is_host') and game_id is not None:
        _release_host(game_id)


def _parse_game_id(data):
    try:
        return int((data or {}).get('game_id'))
    except (TypeError, ValueError):
        return None


def handle_join_game(data):
    game_id = _parse_game_id(data)
    if game_id is None:
        emit('error', {'message': 'game_id is required'})
        return
    game = get_store().games.get(id=game_id)
    if not game:
        emit('error', {'message': 'Game not found'})
        return
    is_host = bool((data or {}).get('is_host'))
    room = room_for(game_id)
    join_room(room)
    sid = _get_sid()
    previous = _sid_to_ctx.get(sid) or {}
    _sid_to_ctx[sid] = {'game_id': game_id, 'is_host': is_host}
    # One socket is at most one host presence
    hosting_here = bool(previous.get('is_host')) and previous.get('game_id') == game_id
    if previous.get('is_host') and not (is_host and hosting_here):
        _release_host(previous['game_id'])
    if is_host:
        if not hosting_here:
            _host_count[game_id] = _host_count.get(game_id, 0) + 1
        cancel_scheduled_stop(game_id)
        if game['status'] in (PLAYING, PAUSED):
            schedule_host_loop(current_app._get_current_object(), game_id)
    emit('joined', {'room': room, 'game': game})


def handle_leave_game(data):
    game_id = _parse_game_id(data)
    if game_id is None:
        emit('error', {'message': 'game_id is required'})
        return
    room = room_for(game_id)
    leave_room(room)
    emit('left', {'room': room})
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx and ctx.get('is_host') and ctx.get('game_id') == game_id:
        # Explicit leave: release immediately once no host remains
        _host_count[game_id] = max(0, _host_count.get(game_id, 0) - 1)
        if _host_count[game_id] == 0:
            stop_host_loop(game_id)


def handle_ping(data):
    emit('pong', data or {})

# ---- Host presence tracking ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_host_count: Dict[int, int] = {}

def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def relay_changes(feed: ChangeFeed) -> None:
    """Fan store changes out to the game's Socket.IO room."""
    def _relay(change: ChangeEvent) -> None:
        if change.game_id is None:
            return
        socketio.emit('row_change', change.to_dict(), to=room_for(change.game_id), namespace='/ws')

    for table in RELAYED_TABLES:
        feed.subscribe(table, ALL_KINDS, None, _relay)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('join_game', handle_join_game, namespace='/ws')
    socketio.on_event('leave_game', handle_leave_game, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
