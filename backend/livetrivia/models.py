from livetrivia import db
from datetime import datetime, timezone
import copy
import time
import uuid


def generate_id():
    return uuid.uuid4().hex


def to_millis(ts):
    """Epoch seconds -> epoch milliseconds for JavaScript clients."""
    return int(ts * 1000) if ts is not None else None


def to_iso(ts):
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# Lobby statuses and game states
WAITING = 'waiting'
COUNTDOWN = 'countdown'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'

STATE_LOBBY = 'lobby'
STATE_QUESTION = 'question'
STATE_ANSWER = 'answer'
STATE_RESULTS = 'results'


class Lobby(db.Model):
    """One live game session container, addressed by a human-chosen id.

    The host, players, round progress and the current question snapshot are
    stored as JSON documents; callers always replace them wholesale.
    """
    __tablename__ = 'lobby'
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    max_players = db.Column(db.Integer, default=1000, nullable=False)
    countdown = db.Column(db.Integer, default=120, nullable=False)
    status = db.Column(db.String(32), default=WAITING, nullable=False, index=True)  # waiting, countdown, in-progress, completed
    game_state = db.Column(db.String(32), default=STATE_LOBBY, nullable=False)  # lobby, question, answer, results
    current_question = db.Column(db.JSON, nullable=True)
    current_question_index = db.Column(db.Integer, default=0, nullable=False)
    current_round_id = db.Column(db.String(32), nullable=True)
    total_questions_in_round = db.Column(db.Integer, default=0, nullable=False)
    total_rounds = db.Column(db.Integer, default=0, nullable=False)
    start_time = db.Column(db.Float, nullable=True)
    game_started_at = db.Column(db.Float, nullable=True)
    stream_url = db.Column(db.String(512), nullable=True)
    round_progress = db.Column(db.JSON, nullable=False, default=list)
    host = db.Column(db.JSON, nullable=True)
    players = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.Float, default=time.time)
    updated_at = db.Column(db.Float, default=time.time, onupdate=time.time)

    # Columns a merge-update may touch; id and created_at are immutable
    MUTABLE_FIELDS = (
        'name', 'max_players', 'countdown', 'status', 'game_state', 'current_question',
        'current_question_index', 'current_round_id', 'total_questions_in_round',
        'total_rounds', 'start_time', 'game_started_at', 'stream_url', 'round_progress',
        'host', 'players',
    )

    def to_document(self):
        doc = {'id': self.id}
        for field in self.MUTABLE_FIELDS:
            doc[field] = copy.deepcopy(getattr(self, field))
        doc['players'] = doc['players'] or []
        doc['round_progress'] = doc['round_progress'] or []
        doc['created_at'] = self.created_at
        doc['updated_at'] = self.updated_at
        return doc


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, default=time.time)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'order': self.order,
            'isActive': self.is_active,
            'totalQuestions': self.total_questions,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    text = db.Column(db.Text, nullable=False)
    choices = db.Column(db.JSON, nullable=False, default=list)
    correct_index = db.Column(db.Integer, nullable=True)  # single-answer questions
    correct_answers = db.Column(db.JSON, nullable=False, default=list)  # multi-answer questions
    time_limit = db.Column(db.Integer, nullable=False, default=30)
    points = db.Column(db.Integer, nullable=False, default=100)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    round_id = db.Column(db.String(32), db.ForeignKey('round.id'), nullable=True, index=True)
    round_index = db.Column(db.Integer, nullable=False, default=0)
    # `metadata` is reserved on declarative models
    extra = db.Column('metadata', db.JSON, nullable=True)
    created_at = db.Column(db.Float, default=time.time)

    round = db.relationship('Round', backref=db.backref('questions', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'text': self.text,
            'choices': list(self.choices or []),
            'correctIndex': self.correct_index,
            'correctAnswers': list(self.correct_answers or []),
            'timeLimit': self.time_limit,
            'points': self.points,
            'isActive': self.is_active,
            'roundId': self.round_id,
            'roundIndex': self.round_index,
            'metadata': self.extra or {},
        }


class GameSession(db.Model):
    """Archival leaderboard of one finished game. Written once."""
    __tablename__ = 'game_session'
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    lobby_id = db.Column(db.String(64), nullable=False, index=True)
    game_name = db.Column(db.String(128), nullable=True)
    host_id = db.Column(db.String(64), nullable=True)
    host_name = db.Column(db.String(128), nullable=True)
    started_at = db.Column(db.Float, nullable=True)
    ended_at = db.Column(db.Float, nullable=False, default=time.time)
    total_rounds_played = db.Column(db.Integer, nullable=False, default=0)
    players = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self):
        return {
            'id': self.id,
            'lobbyId': self.lobby_id,
            'gameName': self.game_name,
            'hostId': self.host_id,
            'hostName': self.host_name,
            'startedAt': to_iso(self.started_at),
            'endedAt': to_iso(self.ended_at),
            'totalRoundsPlayed': self.total_rounds_played,
            'players': copy.deepcopy(self.players or []),
        }
