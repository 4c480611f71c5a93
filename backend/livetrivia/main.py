from flask import Blueprint, jsonify
from flask_login import current_user, login_required

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the live trivia server!'})

@main.route('/health')
def health():
    return jsonify({'status': 'ok'})

@main.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})
