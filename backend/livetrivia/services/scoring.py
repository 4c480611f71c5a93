import logging
import math
from typing import NamedTuple, Optional

from livetrivia.errors import NotFoundFailure, StateConflict, ValidationFailure
from livetrivia.models import STATE_QUESTION
from livetrivia.services.lobbies import find_player


def compute_points(elapsed: float, time_limit: float, base_points: int, min_ratio: float = 0.1) -> int:
    """Points for a correct answer given ``elapsed`` seconds out of ``time_limit``.

    Decays quadratically with time taken and never drops below
    ``min_ratio`` of the base points.
    """
    if time_limit <= 0:
        return int(base_points)
    t = min(max(elapsed, 0.0), time_limit)
    speed_factor = 1 - (t / time_limit) ** 2
    return max(math.floor(base_points * speed_factor), math.floor(base_points * min_ratio))


def round_score(player: dict, round_id: Optional[str]) -> int:
    for entry in player.get('round_scores') or []:
        if entry['round_id'] == round_id:
            return entry['score']
    return 0


def add_round_score(round_scores, round_id, points):
    """Return a new round_scores list with ``points`` added to ``round_id``'s entry."""
    updated = [dict(entry) for entry in round_scores or []]
    for entry in updated:
        if entry['round_id'] == round_id:
            entry['score'] += points
            return updated
    updated.append({'round_id': round_id, 'score': points})
    return updated


def rank_players(players, round_id=None):
    """Full leaderboard by total score, each entry annotated with its rank.

    ``roundScore`` is the sub-score for ``round_id`` (0 when absent).
    """
    ordered = sorted(players, key=lambda p: p.get('score') or 0, reverse=True)
    return [
        {
            'userId': p['user_id'],
            'name': p['name'],
            'score': p.get('score') or 0,
            'rank': rank,
            'roundScore': round_score(p, round_id),
            'lastAnswerCorrect': p.get('last_answer_correct'),
            'roundScores': [
                {'roundId': e['round_id'], 'score': e['score']} for e in p.get('round_scores') or []
            ],
        }
        for rank, p in enumerate(ordered, start=1)
    ]


def rank_players_for_round(players, round_id):
    ordered = sorted(players, key=lambda p: round_score(p, round_id), reverse=True)
    return [
        {
            'userId': p['user_id'],
            'name': p['name'],
            'score': round_score(p, round_id),
            'totalScore': p.get('score') or 0,
            'rank': rank,
        }
        for rank, p in enumerate(ordered, start=1)
    ]


class AnswerResult(NamedTuple):
    user_id: str
    name: str
    is_correct: bool
    points_earned: int
    time_taken: float
    score: int
    answered_count: int
    total_players: int

    def ack(self):
        return {
            'success': True,
            'isCorrect': self.is_correct,
            'pointsEarned': self.points_earned,
            'timeTaken': f"{self.time_taken:.1f}",
        }


class AnswerScoringEngine:
    """Validates and scores one answer submission.

    Only the submitting player's record changes; the orchestrator owns
    the acknowledgement and broadcasts.
    """

    def __init__(self, lobbies, timers, default_time_limit=30, default_points=100,
                 min_ratio=0.1, logger=None):
        self.lobbies = lobbies
        self.timers = timers
        self.default_time_limit = default_time_limit
        self.default_points = default_points
        self.min_ratio = min_ratio
        self.logger = logger or logging.getLogger(__name__)

    def submit(self, lobby_id: str, user_id: str, answer, question_id=None) -> AnswerResult:
        if not isinstance(answer, str):
            raise ValidationFailure('Answer must be a string')
        lobby = self.lobbies.get(lobby_id)
        question = lobby.get('current_question')
        if lobby['game_state'] != STATE_QUESTION or not question:
            raise StateConflict('Cannot submit answer now')

        player = find_player(lobby, user_id)
        if player is None:
            raise NotFoundFailure('You are not in this lobby')
        if player.get('has_answered_current_question'):
            raise StateConflict('You have already answered this question')

        elapsed = self.timers.elapsed(lobby_id)
        if elapsed is None:
            # Late message after the question closed, or the timer was lost
            raise StateConflict('This question is no longer accepting answers')
        if question_id and question.get('id') and question_id != question['id']:
            raise StateConflict('Answer does not match the current question')

        time_limit = question.get('timeLimit') or self.default_time_limit
        if elapsed > time_limit:
            self.logger.info(f"[answer-late] lobby={lobby_id} user={user_id} elapsed={elapsed:.1f}s")
            raise StateConflict('Time limit exceeded')

        is_correct = answer == question.get('correctAnswer')
        points = 0
        if is_correct:
            base_points = question.get('points') or self.default_points
            points = compute_points(elapsed, time_limit, base_points, self.min_ratio)

        round_id = lobby.get('current_round_id')
        players = []
        for p in lobby['players']:
            if p['user_id'] == user_id:
                p = dict(p)
                p['score'] = (p.get('score') or 0) + points
                p['has_answered_current_question'] = True
                p['last_answer_time'] = self.timers.clock()
                p['last_answer_correct'] = is_correct
                p['last_answer'] = answer
                if round_id is not None:
                    p['round_scores'] = add_round_score(p.get('round_scores'), round_id, points)
                player = p
            players.append(p)

        self.lobbies.update(lobby_id, players=players)
        answered = sum(1 for p in players if p.get('has_answered_current_question'))
        self.logger.info(
            f"[answer] lobby={lobby_id} user={user_id} correct={is_correct} "
            f"elapsed={elapsed:.1f}s points={points} score={player['score']}"
        )
        return AnswerResult(
            user_id=user_id,
            name=player['name'],
            is_correct=is_correct,
            points_earned=points,
            time_taken=elapsed,
            score=player['score'],
            answered_count=answered,
            total_players=len(players),
        )
