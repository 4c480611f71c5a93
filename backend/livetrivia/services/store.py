"""Durable storage for lobbies, rounds, questions and archived sessions.

The rest of the core treats this as a document store: reads return plain
dicts, updates are single-row merge writes. SQLAlchemy failures are rolled
back and surfaced as :class:`StoreFailure`.
"""

import functools
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from livetrivia import db
from livetrivia.errors import StoreFailure
from livetrivia.models import GameSession, Lobby, Question, Round


def _store_call(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.logger.error(f"[store-error] op={fn.__name__} args={args!r}: {exc}")
            raise StoreFailure() from exc
    return wrapper


class SessionStore:
    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)

    # ---- lobbies ----

    @_store_call
    def find_lobby(self, lobby_id):
        lobby = db.session.get(Lobby, lobby_id, populate_existing=True)
        return lobby.to_document() if lobby else None

    @_store_call
    def create_lobby(self, fields):
        lobby = Lobby(**fields)
        db.session.add(lobby)
        db.session.commit()
        return lobby.to_document()

    @_store_call
    def update_lobby(self, lobby_id, fields):
        """Merge ``fields`` into the lobby row; returns the new document or None."""
        lobby = db.session.get(Lobby, lobby_id, populate_existing=True)
        if lobby is None:
            return None
        for key, value in fields.items():
            if key not in Lobby.MUTABLE_FIELDS:
                raise ValueError(f"Unknown lobby field: {key}")
            setattr(lobby, key, value)
        lobby.updated_at = time.time()
        db.session.add(lobby)
        db.session.commit()
        return lobby.to_document()

    @_store_call
    def list_lobbies(self):
        return [lobby.to_document() for lobby in Lobby.query.order_by(Lobby.id).all()]

    # ---- rounds ----

    @_store_call
    def list_rounds(self):
        rounds = Round.query.order_by(Round.order.asc(), Round.created_at.asc()).all()
        return [r.to_dict() for r in rounds]

    @_store_call
    def get_round(self, round_id):
        rnd = db.session.get(Round, round_id)
        return rnd.to_dict() if rnd else None

    @_store_call
    def deactivate_all_rounds(self):
        Round.query.filter_by(is_active=True).update({'is_active': False})
        db.session.commit()

    @_store_call
    def set_round_active(self, round_id, active):
        rnd = db.session.get(Round, round_id)
        if rnd is None:
            return None
        rnd.is_active = bool(active)
        db.session.add(rnd)
        db.session.commit()
        return rnd.to_dict()

    # ---- questions ----

    def _active_questions_query(self, round_id):
        query = Question.query.filter_by(is_active=True)
        if round_id is not None:
            return query.filter_by(round_id=round_id).order_by(
                Question.round_index.asc(), Question.created_at.asc())
        return query.order_by(Question.created_at.asc(), Question.round_index.asc())

    @_store_call
    def active_questions(self, round_id=None):
        return [q.to_dict() for q in self._active_questions_query(round_id).all()]

    @_store_call
    def count_active_questions(self, round_id=None):
        return self._active_questions_query(round_id).count()

    @_store_call
    def get_question(self, question_id):
        question = db.session.get(Question, question_id)
        return question.to_dict() if question else None

    # ---- archived sessions ----

    @_store_call
    def create_game_session(self, fields):
        session = GameSession(**fields)
        db.session.add(session)
        db.session.commit()
        return session.to_dict()

    @_store_call
    def get_game_session(self, session_id):
        session = db.session.get(GameSession, session_id)
        return session.to_dict() if session else None
