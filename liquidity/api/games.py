from flask import Blueprint, jsonify, request, current_app, session
import time

from liquidity import clock
from liquidity.errors import GameError, GameNotFound, PlayerNotFound
from liquidity.store import get_store
from liquidity.services.games import commands
from liquidity.services.games.scheduler import schedule_host_loop
from liquidity.services.games.views import Snapshot, derive_host_view, derive_player_view


games = Blueprint('games', __name__)


@games.errorhandler(GameError)
def handle_game_error(exc):
    if exc.status_code >= 500:
        current_app.logger.warning(f"[api-error] {request.method} {request.path} status={exc.status_code} error={exc.message!r}")
    return jsonify(exc.to_dict()), exc.status_code


def _remembered_player_id(game_id: int):
    return (session.get('players') or {}).get(str(game_id))


def _remember_player(game_id: int, player_id: int) -> None:
    players = dict(session.get('players') or {})
    players[str(game_id)] = player_id
    session['players'] = players


def _min_players() -> int:
    try:
        return int(current_app.config.get('MIN_PLAYERS', 2))
    except Exception:
        return 2


def _player_view_payload(store, game_id: int, player_id: int):
    snapshot = Snapshot.load(store, game_id)
    player = snapshot.player(player_id)
    if not player:
        raise PlayerNotFound()
    return derive_player_view(snapshot, player, time.time()).to_dict()


@games.route('/create', methods=['POST'])
def create_game():
    game = commands.create_game(get_store())
    return jsonify({
        'message': 'New game created!',
        'game': game,
        'code': game['code'],
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    code = data.get('code') or data.get('game_code')
    store = get_store()
    existing_id = None
    if code:
        matches = store.games.list(code=code.strip().upper())
        if matches:
            existing_id = _remembered_player_id(matches[-1]['id'])
    player, created = commands.join_game(store, code, data.get('name'), existing_player_id=existing_id)
    _remember_player(player['game_id'], player['id'])
    return jsonify(player), 201 if created else 200


@games.route('/<int:game_id>/state', methods=['GET'])
def get_game_state(game_id):
    snapshot = Snapshot.load(get_store(), game_id)
    view = derive_host_view(snapshot, time.time(), min_players=_min_players())
    return jsonify(view.to_dict())


@games.route('/<int:game_id>/events', methods=['GET'])
def get_game_events(game_id):
    store = get_store()
    if not store.games.get(id=game_id):
        raise GameNotFound()
    return jsonify(store.game_events.list(game_id=game_id))


@games.route('/<int:game_id>/start', methods=['POST'])
def start_game(game_id):
    game = commands.start_game(get_store(), game_id, now=time.time(), min_players=_min_players())
    schedule_host_loop(current_app._get_current_object(), game_id)
    return jsonify(game)


@games.route('/<int:game_id>/resume', methods=['POST'])
def resume_game(game_id):
    game = commands.resume_game(get_store(), game_id, now=time.time())
    schedule_host_loop(current_app._get_current_object(), game_id)
    return jsonify(game)


@games.route('/<int:game_id>/players/<int:player_id>/state', methods=['GET'])
def get_player_state(game_id, player_id):
    return jsonify(_player_view_payload(get_store(), game_id, player_id))


@games.route('/<int:game_id>/me', methods=['GET'])
def get_my_state(game_id):
    player_id = _remembered_player_id(game_id)
    if not player_id:
        raise PlayerNotFound('You have not joined this game')
    return jsonify(_player_view_payload(get_store(), game_id, player_id))


@games.route('/<int:game_id>/players/<int:player_id>/withdraw', methods=['POST'])
def withdraw(game_id, player_id):
    store = get_store()
    game = store.games.get(id=game_id)
    if not game:
        raise GameNotFound()
    player = store.players.get(id=player_id, game_id=game_id)
    if not player:
        raise PlayerNotFound()
    delay = int(current_app.config.get('WITHDRAW_FREEZE_DELAY_MS', 3000)) / 1000.0
    now = time.time()
    elapsed = clock.derive_elapsed_seconds(game['status'], game['started_at'], game['paused_at'], now)
    row = commands.withdraw(store, game, player, elapsed, freeze_delay=delay)
    return jsonify(row)
