"""Balance ledger: the only code path that writes user balances and play counts.

Every mutation is a single conditional UPDATE evaluated by the database, so
concurrent adjustments for the same user serialize on the row and never lose
an update. Zero affected rows means the user is missing or the change would
take the balance below zero.

Transaction ownership: with ``commit=False`` the caller owns the unit of
work and must commit or roll back the session.
"""
from flask import current_app
from sqlalchemy import select, update

from wagerplay import db
from wagerplay.errors import (
    GameError,
    InsufficientFunds,
    MalformedPayload,
    TransactionNotFound,
    TransactionNotPending,
    UnknownUser,
)
from wagerplay.models import Notification, Transaction, User, utcnow

CREDIT_TYPES = ('deposit', 'win', 'refund')


def adjust_balance(user_id, delta, *, entry_type=None, match_id=None, commit=True):
    """Atomically add ``delta`` to the user's balance and return the new balance.

    When ``entry_type`` is given a completed Transaction of ``abs(delta)`` is
    written in the same database transaction.
    """
    delta = int(delta)
    try:
        result = db.session.execute(
            update(User)
            .where(User.id == user_id, User.balance + delta >= 0)
            .values(balance=User.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = db.session.execute(
                select(User.balance).where(User.id == user_id)
            ).scalar_one_or_none()
            if available is None:
                raise UnknownUser(user_id)
            raise InsufficientFunds(-delta, available)

        new_balance = db.session.execute(
            select(User.balance).where(User.id == user_id)
        ).scalar_one()
        if entry_type and delta:
            now = utcnow()
            db.session.add(Transaction(
                user_id=user_id,
                type=entry_type,
                amount=abs(delta),
                status='completed',
                match_id=match_id,
                created_at=now,
                completed_at=now,
            ))
            db.session.flush()
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise

    current_app.logger.info(
        f"[ledger] user={user_id} delta={delta:+d} balance={new_balance} type={entry_type} match={match_id}"
    )
    return new_balance


def record_result(user_id, won, *, commit=True):
    values = {'games_played': User.games_played + 1}
    if won:
        values['games_won'] = User.games_won + 1
    try:
        result = db.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise UnknownUser(user_id)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise


def admin_adjust(user_id, amount):
    """Credit (positive) or debit (negative) a balance by hand.

    Written as a completed deposit or withdrawal so the history still adds up
    to the balance.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
        raise MalformedPayload(f"Amount must be a non-zero whole number, got {amount!r}")
    entry_type = 'deposit' if amount > 0 else 'withdrawal'
    return adjust_balance(user_id, amount, entry_type=entry_type)


def get_balance(user_id):
    balance = db.session.execute(
        select(User.balance).where(User.id == user_id)
    ).scalar_one_or_none()
    if balance is None:
        raise UnknownUser(user_id)
    return balance


def request_transaction(user_id, tx_type, amount):
    """Open a pending deposit or withdrawal for an admin to adjudicate."""
    if tx_type not in ('deposit', 'withdrawal'):
        raise GameError(f"Unsupported transaction type: {tx_type!r}")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise GameError('Amount must be a positive whole number')
    user = db.session.get(User, user_id)
    if user is None:
        raise UnknownUser(user_id)
    if tx_type == 'withdrawal' and user.balance < amount:
        raise InsufficientFunds(amount, user.balance)

    tx = Transaction(user_id=user_id, type=tx_type, amount=amount, status='pending')
    db.session.add(tx)
    db.session.flush()
    db.session.add(Notification(
        type=f"{tx_type}_request",
        user_id=user_id,
        transaction_id=tx.id,
        amount=amount,
        message=f"{user.username} requested a {tx_type} of {amount}",
    ))
    db.session.commit()
    current_app.logger.info(f"[ledger-request] user={user_id} type={tx_type} amount={amount} tx={tx.id}")
    return tx


def adjudicate_transaction(transaction_id, status):
    """Move a pending deposit/withdrawal to completed or failed, exactly once.

    Completing applies the balance change through ``adjust_balance`` in the
    same database transaction as the status flip.
    """
    if status not in ('completed', 'failed'):
        raise GameError(f"Invalid status: {status!r}")
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise TransactionNotFound(transaction_id)

    now = utcnow()
    try:
        flipped = db.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == 'pending')
            .values(status=status, completed_at=now if status == 'completed' else None)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount == 0:
            raise TransactionNotPending(transaction_id)

        if status == 'completed':
            delta = tx.amount if tx.type in CREDIT_TYPES else -tx.amount
            adjust_balance(tx.user_id, delta, commit=False)

        db.session.execute(
            update(Notification)
            .where(Notification.transaction_id == transaction_id, Notification.status == 'pending')
            .values(status='approved' if status == 'completed' else 'rejected')
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(tx)
    current_app.logger.info(f"[ledger-adjudicate] tx={transaction_id} type={tx.type} status={status}")
    return tx
