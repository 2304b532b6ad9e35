"""Match snapshot persistence.

None of these helpers commit; callers own the unit of work.
"""
import json

from sqlalchemy import delete, select, update

from wagerplay import db
from wagerplay.errors import MatchNotFound
from wagerplay.models import MatchRecord, utcnow


def save_snapshot(match) -> None:
    """Insert or update the persisted copy of ``match``."""
    db.session.merge(MatchRecord(
        id=match.id,
        board=json.dumps(list(match.board)),
        current_turn=match.current_turn,
        player_x_id=match.players['X'].id,
        player_o_id=match.players['O'].id if match.players['O'] else None,
        invited_user_id=match.invited_user_id,
        status=match.status,
        bet_amount=match.bet_amount,
        pot=match.pot,
        stakes=json.dumps(dict(match.stakes)),
        winner=match.winner,
        is_bot_match=match.is_bot_match,
        created_at=match.created_at,
        ended_at=match.ended_at,
        settlement_status=match.settlement_status,
    ))
    db.session.flush()


def load_record(match_id):
    return db.session.get(MatchRecord, match_id)


def delete_snapshot(match_id) -> None:
    db.session.execute(delete(MatchRecord).where(MatchRecord.id == match_id))


def claim_settlement(match_id) -> bool:
    """Flip the snapshot to settled. False means it was already settled."""
    result = db.session.execute(
        update(MatchRecord)
        .where(MatchRecord.id == match_id, MatchRecord.settlement_status != 'settled')
        .values(settlement_status='settled', settled_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return True
    exists = db.session.execute(
        select(MatchRecord.id).where(MatchRecord.id == match_id)
    ).scalar_one_or_none()
    if exists is None:
        raise MatchNotFound(match_id)
    return False


def mark_settlement_failed(match_id) -> None:
    db.session.execute(
        update(MatchRecord)
        .where(MatchRecord.id == match_id, MatchRecord.settlement_status != 'settled')
        .values(settlement_status='failed')
        .execution_options(synchronize_session=False)
    )


def failed_settlement_ids():
    return list(db.session.execute(
        select(MatchRecord.id).where(MatchRecord.settlement_status == 'failed')
    ).scalars())


def unsettled_records():
    """Every snapshot not yet paid out, oldest first.

    Waiting and playing matches are always ``pending``; abandoned ones are
    deleted, so this is exactly the set a fresh registry has to take back.
    """
    return list(db.session.execute(
        select(MatchRecord)
        .where(MatchRecord.settlement_status != 'settled')
        .order_by(MatchRecord.created_at)
    ).scalars())
