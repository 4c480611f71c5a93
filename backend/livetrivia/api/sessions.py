from flask import Blueprint, jsonify
from flask_login import login_required

from livetrivia.api import services
from livetrivia.errors import NotFoundFailure

sessions = Blueprint('sessions', __name__)


@sessions.route('/<string:session_id>', methods=['GET'])
@login_required
def get_game_session(session_id):
    """
    Archived leaderboard of a finished game.
    """
    session = services().store.get_game_session(session_id)
    if not session:
        raise NotFoundFailure('Game session not found')
    return jsonify({
        'success': True,
        'session': session,
        'players': [
            {'userId': p['userId'], 'name': p['name'], 'score': p['score'], 'rank': p['rank']}
            for p in session['players']
        ],
    }), 200
