from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from wagerplay import db
from wagerplay.errors import Forbidden, GameError, MalformedPayload, UnknownUser
from wagerplay.models import Notification, Transaction, User
from wagerplay.services.matches import get_gateway, get_state_machine
from wagerplay.services.matches import ledger

matches = Blueprint('matches', __name__)

USER_STATUSES = ('active', 'banned', 'pending')


@matches.route('/matches/lobby', methods=['GET'])
def get_lobby():
    return jsonify(get_gateway().lobby())


@matches.route('/matches/<string:match_id>', methods=['GET'])
def get_match(match_id):
    return jsonify(get_state_machine().get(match_id).to_dict())


@matches.route('/matches/<string:match_id>/move', methods=['POST'])
@login_required
def make_move(match_id):
    """HTTP fallback for the socket ``move`` event; same rules, same broadcast."""
    data = request.get_json(silent=True) or {}
    if 'cellIndex' not in data:
        raise MalformedPayload("'cellIndex' is required")
    match = get_state_machine().apply_move(match_id, current_user.id, data['cellIndex'])
    get_gateway().after_move(match)
    return jsonify(match.to_dict())


@matches.route('/users/<int:user_id>', methods=['GET'])
def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise UnknownUser(user_id)
    return jsonify(user.to_dict())


@matches.route('/transactions', methods=['GET'])
@login_required
def list_transactions():
    limit = min(request.args.get('limit', 50, type=int), 200)
    rows = (
        Transaction.query.filter_by(user_id=current_user.id)
        .order_by(Transaction.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify([tx.to_dict() for tx in rows])


@matches.route('/transactions', methods=['POST'])
@login_required
def create_transaction():
    """Deposit or withdrawal request; balance moves only once an admin approves."""
    data = request.get_json(silent=True) or {}
    tx = ledger.request_transaction(current_user.id, data.get('type'), data.get('amount'))
    return jsonify(tx.to_dict()), 201


def _require_admin():
    if not current_user.is_admin:
        raise Forbidden('Admin access required')


@matches.route('/admin/notifications', methods=['GET'])
@login_required
def list_notifications():
    _require_admin()
    status = request.args.get('status', 'pending')
    rows = Notification.query.filter_by(status=status).order_by(Notification.id.desc()).all()
    return jsonify([n.to_dict() for n in rows])


@matches.route('/admin/transactions/<int:transaction_id>', methods=['PATCH'])
@login_required
def adjudicate_transaction(transaction_id):
    _require_admin()
    data = request.get_json(silent=True) or {}
    tx = ledger.adjudicate_transaction(transaction_id, data.get('status'))
    return jsonify(tx.to_dict())


@matches.route('/admin/users/<int:user_id>', methods=['PATCH'])
@login_required
def update_user(user_id):
    """Rename, ban/unban or promote a user. Balances go through the balance route."""
    _require_admin()
    data = request.get_json(silent=True) or {}
    user = db.session.get(User, user_id)
    if user is None:
        raise UnknownUser(user_id)
    fields = [key for key in ('username', 'status', 'isAdmin') if key in data]
    if not fields:
        raise MalformedPayload('No valid fields to update')

    if 'username' in data:
        username = data['username']
        if not isinstance(username, str) or not username.strip():
            raise MalformedPayload("'username' must be a non-empty string")
        taken = User.query.filter(User.username == username, User.id != user.id).first()
        if taken is not None:
            raise GameError('Username already taken')
        user.username = username
    if 'status' in data:
        if data['status'] not in USER_STATUSES:
            raise MalformedPayload(f"'status' must be one of {', '.join(USER_STATUSES)}")
        user.status = data['status']
    if 'isAdmin' in data:
        if not isinstance(data['isAdmin'], bool):
            raise MalformedPayload("'isAdmin' must be a boolean")
        user.is_admin = data['isAdmin']
    db.session.commit()
    current_app.logger.info(f"[admin-user] admin={current_user.id} user={user_id} fields={fields}")
    return jsonify(user.to_dict())


@matches.route('/admin/users/<int:user_id>/balance', methods=['POST'])
@login_required
def adjust_user_balance(user_id):
    _require_admin()
    data = request.get_json(silent=True) or {}
    balance = ledger.admin_adjust(user_id, data.get('amount'))
    current_app.logger.info(f"[admin-balance] admin={current_user.id} user={user_id} amount={data.get('amount')}")
    return jsonify({'userId': user_id, 'balance': balance})
