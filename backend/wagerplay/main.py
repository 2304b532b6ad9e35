from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from wagerplay import db
from wagerplay.errors import GameError
from wagerplay.models import User

main = Blueprint('main', __name__)


@main.app_errorhandler(GameError)
def handle_game_error(exc):
    payload = {'error': exc.code, 'message': exc.message}
    if exc.match is not None:
        payload['match'] = exc.match.to_dict()
    return jsonify(payload), exc.http_status


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the wagerplay game server!'})


@main.route('/health')
def health():
    return jsonify({'status': 'ok'})


@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    if not data.get('username') or not data.get('password'):
        return jsonify({'error': 'Missing username or password'}), 400

    if User.query.filter_by(username=data['username']).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=data['username'])
    user.set_password(data['password'])
    db.session.add(user)
    db.session.commit()
    login_user(user)
    return jsonify(user.to_dict()), 201


@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and not user.is_bot and user.check_password(data.get('password') or ''):
        if not login_user(user, remember=True):
            return jsonify({'error': 'Account is not active'}), 403
        return jsonify(user.to_dict())
    return jsonify({'error': 'Invalid username or password'}), 401


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})


@main.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict())
