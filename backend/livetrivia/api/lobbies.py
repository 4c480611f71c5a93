from flask import Blueprint, jsonify, request
from flask_login import login_required

from livetrivia.api import services
from livetrivia.errors import NotFoundFailure, ValidationFailure
from livetrivia.services.lobbies import validate_lobby_id

lobbies = Blueprint('lobbies', __name__)


def _existing_lobby(lobby_id):
    validate_lobby_id(lobby_id)
    if services().store.find_lobby(lobby_id) is None:
        raise NotFoundFailure('Lobby not found')


@lobbies.route('/<string:lobby_id>', methods=['GET'])
@login_required
def get_lobby(lobby_id):
    """
    Returns the player-facing snapshot of a lobby. Answer keys are stripped.
    """
    _existing_lobby(lobby_id)
    return jsonify(services().orchestrator.snapshot(lobby_id)), 200


@lobbies.route('/<string:lobby_id>/leaderboard', methods=['GET'])
@login_required
def get_leaderboard(lobby_id):
    """
    Ranked leaderboard by total score, or by one round's score with
    ?type=round&roundId=<id>.
    """
    _existing_lobby(lobby_id)
    board_type = request.args.get('type', 'total')
    round_id = request.args.get('roundId')
    if board_type == 'round':
        if not round_id:
            raise ValidationFailure('roundId is required for a round leaderboard')
        return jsonify({
            'type': 'round',
            'roundId': round_id,
            'leaderboard': services().orchestrator.leaderboard(lobby_id, round_id=round_id),
        }), 200
    if board_type != 'total':
        raise ValidationFailure('type must be "total" or "round"')
    return jsonify({
        'type': 'total',
        'leaderboard': services().orchestrator.leaderboard(lobby_id),
    }), 200
