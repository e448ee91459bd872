from liquidity import db
import random
import time

# Excludes I, O, 0 and 1, which players misread on a projector
JOIN_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
JOIN_CODE_LENGTH = 6


def generate_join_code(length=JOIN_CODE_LENGTH, rng=random):
    """Generate a short, human-enterable game code.

    Codes are drawn with replacement; uniqueness across games is not checked.
    """
    return ''.join(rng.choice(JOIN_CODE_ALPHABET) for _ in range(length))


class Game(db.Model):
    __tablename__ = 'games'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(JOIN_CODE_LENGTH), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, playing, paused, ended
    started_at = db.Column(db.Float, nullable=True)
    paused_at = db.Column(db.Float, nullable=True)
    total_vault_display = db.Column(db.Float, nullable=False, default=0.0)
    actual_vault = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    players = db.relationship('Player', back_populates='game', order_by='Player.created_at')
    events = db.relationship('GameEvent', backref='game', lazy='dynamic')

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_join_code()

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'status': self.status,
            'started_at': self.started_at,
            'paused_at': self.paused_at,
            'total_vault_display': self.total_vault_display,
            'actual_vault': self.actual_vault,
            'created_at': self.created_at,
        }


class Player(db.Model):
    __tablename__ = 'players'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('games.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    role = db.Column(db.String(16), nullable=False, default='customer')  # customer, ftx, alameda, observer
    balance = db.Column(db.Float, nullable=False, default=100.0)
    has_withdrawn = db.Column(db.Boolean, nullable=False, default=False)
    withdrawn_amount = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    game = db.relationship('Game', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'name': self.name,
            'role': self.role,
            'balance': self.balance,
            'has_withdrawn': self.has_withdrawn,
            'withdrawn_amount': self.withdrawn_amount,
            'created_at': self.created_at,
        }


class GameEvent(db.Model):
    """Append-only broadcast/audit log entry."""
    __tablename__ = 'game_events'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('games.id'), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)  # game_start, ftx_message, journalist, pause, resume, game_end
    message = db.Column(db.Text, nullable=False, default='')
    created_at = db.Column(db.Float, nullable=False, default=time.time)

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'event_type': self.event_type,
            'message': self.message,
            'created_at': self.created_at,
        }
