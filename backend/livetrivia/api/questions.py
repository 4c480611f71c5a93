from flask import Blueprint, jsonify
from flask_login import login_required

from livetrivia.api import services

questions = Blueprint('questions', __name__)


@questions.route('/rounds', methods=['GET'])
@login_required
def get_all_rounds():
    rounds = services().resolver.list_rounds_ordered()
    return jsonify({'rounds': rounds, 'totalRounds': len(rounds)}), 200


@questions.route('/rounds/<string:round_id>', methods=['GET'])
@login_required
def get_round(round_id):
    return jsonify({'round': services().resolver.get_round(round_id)}), 200


@questions.route('/round/<string:round_id>', methods=['GET'])
@login_required
def get_questions_by_round(round_id):
    resolver = services().resolver
    resolver.get_round(round_id)
    items = resolver.questions_in_round(round_id)
    return jsonify({'roundId': round_id, 'questions': items, 'totalQuestions': len(items)}), 200


@questions.route('/round/<string:round_id>/index/<int:index>', methods=['GET'])
@login_required
def get_question_by_round_and_index(round_id, index):
    """
    Question at a 1-based position within a round, without its answer key.
    """
    resolver = services().resolver
    resolver.get_round(round_id)
    return jsonify({
        'question': resolver.question_at(round_id, index),
        'totalQuestions': resolver.count_in_round(round_id),
        'currentQuestion': index,
    }), 200


@questions.route('/round/<string:round_id>/total', methods=['GET'])
@login_required
def get_total_questions_by_round(round_id):
    resolver = services().resolver
    resolver.get_round(round_id)
    return jsonify({'roundId': round_id, 'totalQuestions': resolver.count_in_round(round_id)}), 200


@questions.route('/index/<int:index>', methods=['GET'])
@login_required
def get_question_by_index(index):
    resolver = services().resolver
    return jsonify({
        'question': resolver.question_at(None, index),
        'totalQuestions': resolver.total_questions(),
        'currentQuestion': index,
    }), 200


@questions.route('/total', methods=['GET'])
@login_required
def get_total_questions():
    resolver = services().resolver
    per_round = {r['id']: resolver.count_in_round(r['id']) for r in resolver.list_rounds_ordered()}
    return jsonify({'totalQuestions': resolver.total_questions(), 'perRound': per_round}), 200


@questions.route('/<string:question_id>', methods=['GET'])
@login_required
def get_question_by_id(question_id):
    """
    Host lookup by id; includes the answer key.
    """
    return jsonify({'question': services().resolver.question_by_id(question_id, include_answer=True)}), 200
