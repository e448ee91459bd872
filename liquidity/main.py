from flask import Blueprint, jsonify
from liquidity import clock

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to The Liquidity Illusion game server!'})

@main.route('/rules')
def rules():
    return jsonify({
        'principal': clock.PRINCIPAL,
        'growth_rate_per_second': clock.GROWTH_RATE,
        'freeze_threshold_sec': clock.FREEZE_THRESHOLD_SEC,
        'game_duration_sec': clock.GAME_DURATION_SEC,
    })
