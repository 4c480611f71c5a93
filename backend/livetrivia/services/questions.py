import logging

from livetrivia.errors import NotFoundFailure, ValidationFailure

# Keys that reveal the answer; never sent on a player-facing path
ANSWER_KEYS = ('correctIndex', 'correctAnswers', 'correctAnswer')


def strip_answer_key(question):
    """Player-facing projection of a question payload."""
    if question is None:
        return None
    return {k: v for k, v in question.items() if k not in ANSWER_KEYS}


def resolve_correct_answer(question):
    """Literal text of the correct choice(s), joined with ", " for multi-answer."""
    choices = question.get('choices') or []
    index = question.get('correctIndex')
    if index is not None:
        return choices[index] if 0 <= index < len(choices) else None
    answers = [choices[i] for i in question.get('correctAnswers') or [] if 0 <= i < len(choices)]
    return ', '.join(answers) if answers else None


class RoundResolver:
    """Translates (round, position) into question payloads.

    The canonical round sequence is rounds sorted by ``order``; a lobby's
    numeric round index is always derived from it. Question positions are
    1-based here and count active questions only.
    """

    def __init__(self, store, default_time_limit=30, default_points=100, logger=None):
        self.store = store
        self.default_time_limit = default_time_limit
        self.default_points = default_points
        self.logger = logger or logging.getLogger(__name__)

    # ---- rounds ----

    def list_rounds_ordered(self):
        return self.store.list_rounds()

    def get_round(self, round_id):
        rnd = self.store.get_round(round_id) if round_id else None
        if rnd is None:
            raise NotFoundFailure('Round not found')
        return rnd

    def round_index(self, round_id):
        if round_id is None:
            return -1
        for idx, rnd in enumerate(self.list_rounds_ordered()):
            if rnd['id'] == round_id:
                return idx
        return -1

    def round_at(self, index):
        rounds = self.list_rounds_ordered()
        if not isinstance(index, int) or not 0 <= index < len(rounds):
            return None
        return rounds[index]

    def activate(self, round_id):
        """Make ``round_id`` the only active round.

        Two writes, not a transaction: a crash in between leaves no round
        active until the host selects one again.
        """
        self.get_round(round_id)
        self.store.deactivate_all_rounds()
        rnd = self.store.set_round_active(round_id, True)
        self.logger.info(f"[round-activate] round={round_id}")
        return rnd

    def deactivate(self, round_id):
        return self.store.set_round_active(round_id, False)

    # ---- questions ----

    def _normalize(self, question, position):
        payload = {
            'id': question['id'],
            'text': question['text'],
            'choices': list(question['choices']),
            'correctIndex': question.get('correctIndex'),
            'correctAnswers': list(question.get('correctAnswers') or []),
            'timeLimit': question.get('timeLimit') or self.default_time_limit,
            'points': question.get('points') or self.default_points,
            'roundId': question.get('roundId'),
            'roundIndex': question.get('roundIndex'),
            'questionNumber': position,
        }
        return payload

    def _lookup(self, round_id, question_index):
        if not isinstance(question_index, int) or isinstance(question_index, bool):
            raise ValidationFailure('Invalid question index')
        if question_index < 1:
            raise ValidationFailure('Invalid question index')
        questions = self.store.active_questions(round_id)
        if question_index > len(questions):
            raise NotFoundFailure(f"Question {question_index} not found")
        return self._normalize(questions[question_index - 1], question_index), len(questions)

    def question_at(self, round_id, question_index):
        question, _ = self._lookup(round_id, question_index)
        return strip_answer_key(question)

    def full_question(self, round_id, question_index):
        question, _ = self._lookup(round_id, question_index)
        question['correctAnswer'] = resolve_correct_answer(question)
        return question

    def questions_in_round(self, round_id):
        return [
            strip_answer_key(self._normalize(q, pos))
            for pos, q in enumerate(self.store.active_questions(round_id), start=1)
        ]

    def question_by_id(self, question_id, include_answer=False):
        question = self.store.get_question(question_id)
        if question is None:
            raise NotFoundFailure('Question not found')
        if not question.get('isActive'):
            raise ValidationFailure('Question is not active')
        payload = self._normalize(question, None)
        if not include_answer:
            return strip_answer_key(payload)
        payload['correctAnswer'] = resolve_correct_answer(payload)
        return payload

    def count_in_round(self, round_id):
        return self.store.count_active_questions(round_id)

    def total_questions(self):
        return self.store.count_active_questions(None)
