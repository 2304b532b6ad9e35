from datetime import datetime, timezone
import json

from flask_login import UserMixin

from wagerplay import db, bcrypt


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value else None


def as_utc(value):
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=True)
    # Whole currency units; only the ledger writes balance and the counters
    balance = db.Column(db.Integer, nullable=False, default=0)
    games_played = db.Column(db.Integer, nullable=False, default=0)
    games_won = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default='active')  # active, banned, pending
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_bot = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='ck_user_balance_non_negative'),
    )

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        return self.status == 'active'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'balance': self.balance,
            'gamesPlayed': self.games_played,
            'gamesWon': self.games_won,
            'status': self.status,
            'isAdmin': self.is_admin,
            'isBot': self.is_bot,
            'createdAt': isoformat(self.created_at),
        }


class MatchRecord(db.Model):
    """Persisted snapshot of a match; the live copy lives in the registry."""
    __tablename__ = 'match'
    id = db.Column(db.String(40), primary_key=True)
    board = db.Column(db.Text, nullable=False)  # JSON-encoded list of 9 cells
    current_turn = db.Column(db.String(1), nullable=False, default='X')
    player_x_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    player_o_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    invited_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, playing, completed, draw
    bet_amount = db.Column(db.Integer, nullable=False)
    pot = db.Column(db.Integer, nullable=False, default=0)
    stakes = db.Column(db.Text, nullable=False, default='{}')  # JSON: mark -> contributed amount
    winner = db.Column(db.String(1), nullable=True)
    is_bot_match = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settlement_status = db.Column(db.String(16), nullable=False, default='pending')  # pending, settled, failed
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    player_x = db.relationship('User', foreign_keys=[player_x_id])
    player_o = db.relationship('User', foreign_keys=[player_o_id])

    def board_cells(self):
        return json.loads(self.board)

    def stake_map(self):
        return json.loads(self.stakes or '{}')


class Transaction(db.Model):
    __tablename__ = 'transaction'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)  # deposit, withdrawal, bet, win, refund
    # Always positive; the sign of the effect follows from type
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, completed, failed
    match_id = db.Column(db.String(40), db.ForeignKey('match.id'), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint('amount > 0', name='ck_transaction_amount_positive'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'type': self.type,
            'amount': self.amount,
            'status': self.status,
            'matchId': self.match_id,
            'createdAt': isoformat(self.created_at),
            'completedAt': isoformat(self.completed_at),
        }


class Notification(db.Model):
    __tablename__ = 'notification'
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False)  # deposit_request, withdrawal_request, system
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=True)
    amount = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, approved, rejected
    message = db.Column(db.Text, nullable=False, default='')
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'userId': self.user_id,
            'transactionId': self.transaction_id,
            'amount': self.amount,
            'status': self.status,
            'message': self.message,
            'createdAt': isoformat(self.created_at),
        }
