"""Row-level access to games, players and game events.

Rows cross this boundary as plain dicts. Successful writes are published
on the application's change feed.
"""

from typing import Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from liquidity import db
from liquidity.errors import StoreError
from liquidity.feed import INSERT, UPDATE, ChangeEvent, ChangeFeed
from liquidity.models import Game, GameEvent, Player

FEED_EXTENSION = 'liquidity.feed'


class Table:
    def __init__(self, name: str, model, feed: ChangeFeed):
        self.name = name
        self.model = model
        self.feed = feed

    def _query(self, filters: Dict[str, object]):
        return self.model.query.filter_by(**filters)

    def get(self, **filters) -> Optional[dict]:
        row = self._query(filters).first()
        return row.to_dict() if row else None

    def list(self, order_by: Tuple[str, ...] = ('created_at', 'id'), **filters) -> List[dict]:
        columns = [getattr(self.model, name) for name in order_by]
        return [row.to_dict() for row in self._query(filters).order_by(*columns).all()]

    def insert(self, **fields) -> dict:
        row = self.model(**fields)
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"insert into {self.name} failed") from exc
        data = row.to_dict()
        self.feed.publish(ChangeEvent(self.name, INSERT, data))
        return data

    def update(self, filters: Dict[str, object], **fields) -> Optional[dict]:
        """Update the single row matching ``filters``; None if nothing matched."""
        try:
            row = self._query(filters).with_for_update().first()
            if row is None:
                db.session.rollback()
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"update of {self.name} failed") from exc
        data = row.to_dict()
        self.feed.publish(ChangeEvent(self.name, UPDATE, data))
        return data


class GameStore:
    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self.games = Table('games', Game, feed)
        self.players = Table('players', Player, feed)
        self.game_events = Table('game_events', GameEvent, feed)

    def table(self, name: str) -> Table:
        return {'games': self.games, 'players': self.players, 'game_events': self.game_events}[name]


def get_feed(app=None) -> ChangeFeed:
    app = app or current_app
    return app.extensions[FEED_EXTENSION]


def get_store(app=None) -> GameStore:
    return GameStore(get_feed(app))
