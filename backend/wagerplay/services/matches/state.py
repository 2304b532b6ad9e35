"""Authoritative per-match state and the transitions allowed on it.

``MatchState`` is an immutable value: every transition returns a new state,
so a rejected or rolled-back operation never leaves a half-applied board
behind. ``MatchStateMachine`` runs the transitions under the registry's
per-match lock, charges stakes through the ledger, persists the snapshot
and hands terminal states to settlement.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
import uuid

from flask import current_app
from sqlalchemy import select

from wagerplay import db
from wagerplay.errors import (
    GameNotActive,
    IllegalMove,
    InsufficientFunds,
    InvalidBet,
    InvalidIndex,
    MatchNotFound,
    MatchNotJoinable,
    NotAPlayer,
    NotYourTurn,
    SelfJoin,
    UnknownUser,
)
from wagerplay.models import User, as_utc, isoformat, utcnow
from . import board as rules
from . import ledger, store

WAITING = 'waiting'
PLAYING = 'playing'
COMPLETED = 'completed'
DRAW = 'draw'
TERMINAL = (COMPLETED, DRAW)


@dataclass(frozen=True)
class PlayerRef:
    id: int
    username: str

    def to_dict(self):
        return {'id': self.id, 'username': self.username}


@dataclass(frozen=True)
class MatchState:
    id: str
    bet_amount: int
    players: Dict[str, Optional[PlayerRef]]
    board: Tuple[Optional[str], ...] = field(default_factory=lambda: tuple(rules.empty_board()))
    current_turn: str = rules.X
    status: str = WAITING
    pot: int = 0
    stakes: Dict[str, int] = field(default_factory=lambda: {rules.X: 0, rules.O: 0})
    winner: Optional[str] = None
    created_at: object = field(default_factory=utcnow)
    ended_at: object = None
    invited_user_id: Optional[int] = None
    is_bot_match: bool = False
    settlement_status: str = 'pending'

    @property
    def is_terminal(self):
        return self.status in TERMINAL

    @property
    def moves_played(self):
        return sum(1 for cell in self.board if cell is not None)

    def player_ids(self):
        return [p.id for p in self.players.values() if p is not None]

    def mark_of(self, user_id):
        for mark, player in self.players.items():
            if player is not None and player.id == user_id:
                return mark
        return None

    def with_join(self, player: PlayerRef, is_bot=False):
        return replace(
            self,
            players={rules.X: self.players[rules.X], rules.O: player},
            status=PLAYING,
            is_bot_match=is_bot,
        )

    def with_move(self, mark, index, now=None):
        """Place ``mark`` and collect one stake; a win beats a full board."""
        board = list(self.board)
        board[index] = mark
        stakes = dict(self.stakes)
        stakes[mark] = stakes.get(mark, 0) + self.bet_amount
        changes = {
            'board': tuple(board),
            'pot': self.pot + self.bet_amount,
            'stakes': stakes,
        }
        won_by = rules.winner(board)
        if won_by is not None:
            changes.update(status=COMPLETED, winner=won_by, ended_at=now or utcnow())
        elif rules.is_full(board):
            changes.update(status=DRAW, ended_at=now or utcnow())
        else:
            changes['current_turn'] = rules.other_mark(mark)
        return replace(self, **changes)

    def with_forfeit(self, loser_mark, now=None):
        return replace(
            self,
            status=COMPLETED,
            winner=rules.other_mark(loser_mark),
            ended_at=now or utcnow(),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'board': list(self.board),
            'currentTurn': self.current_turn,
            'players': {
                mark: (player.to_dict() if player else None)
                for mark, player in self.players.items()
            },
            'status': self.status,
            'betAmount': self.bet_amount,
            'pot': self.pot,
            'stakes': dict(self.stakes),
            'winner': self.winner,
            'invitedUserId': self.invited_user_id,
            'isBotMatch': self.is_bot_match,
            'settlementStatus': self.settlement_status,
            'createdAt': isoformat(self.created_at),
            'endedAt': isoformat(self.ended_at),
        }

    @classmethod
    def from_record(cls, record):
        player_o = None
        if record.player_o is not None:
            player_o = PlayerRef(record.player_o.id, record.player_o.username)
        return cls(
            id=record.id,
            bet_amount=record.bet_amount,
            players={
                rules.X: PlayerRef(record.player_x.id, record.player_x.username),
                rules.O: player_o,
            },
            board=tuple(record.board_cells()),
            current_turn=record.current_turn,
            status=record.status,
            pot=record.pot,
            stakes=record.stake_map(),
            winner=record.winner,
            created_at=as_utc(record.created_at),
            ended_at=as_utc(record.ended_at),
            invited_user_id=record.invited_user_id,
            is_bot_match=record.is_bot_match,
            settlement_status=record.settlement_status,
        )


def new_match_id():
    return uuid.uuid4().hex


class MatchStateMachine:

    def __init__(self, registry, settlement, config):
        self.registry = registry
        self.settlement = settlement
        self.config = config
        self._bot_user_id = None

    # ---- lookups ----

    def get(self, match_id):
        """Live match, or the archived snapshot once it has left the registry."""
        match = self.registry.get(match_id)
        if match is not None:
            return match
        record = store.load_record(match_id)
        if record is None:
            raise MatchNotFound(match_id)
        return MatchState.from_record(record)

    def bot_user_id(self):
        if self._bot_user_id is None:
            bot_id = db.session.execute(
                select(User.id).where(User.username == self.config['BOT_USERNAME'], User.is_bot.is_(True))
            ).scalar_one_or_none()
            if bot_id is None:
                raise UnknownUser(self.config['BOT_USERNAME'])
            self._bot_user_id = bot_id
        return self._bot_user_id

    def _active_user(self, user_id):
        user = db.session.get(User, user_id) if user_id is not None else None
        if user is None or not user.is_active:
            raise UnknownUser(user_id)
        return user

    def _validate_bet(self, amount):
        min_bet, max_bet = self.config['MIN_BET'], self.config['MAX_BET']
        if isinstance(amount, bool) or not isinstance(amount, int) or not min_bet <= amount <= max_bet:
            raise InvalidBet(amount, min_bet, max_bet)
        return amount

    @staticmethod
    def _raise_if_archived(match_id):
        record = store.load_record(match_id)
        if record is not None:
            raise GameNotActive(MatchState.from_record(record))

    @contextmanager
    def _locked(self, match_id):
        with self.registry.locked(match_id, missing=self._raise_if_archived) as match:
            yield match

    def _commit_snapshot(self, match):
        try:
            store.save_snapshot(match)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    # ---- operations ----

    def create(self, creator_id, bet_amount, invited_user_id=None):
        bet_amount = self._validate_bet(bet_amount)
        creator = self._active_user(creator_id)
        if creator.balance < bet_amount:
            raise InsufficientFunds(bet_amount, creator.balance)
        if invited_user_id is not None:
            if invited_user_id == creator.id:
                raise SelfJoin()
            self._active_user(invited_user_id)

        match = MatchState(
            id=new_match_id(),
            bet_amount=bet_amount,
            players={rules.X: PlayerRef(creator.id, creator.username), rules.O: None},
            invited_user_id=invited_user_id,
        )
        self._commit_snapshot(match)
        self.registry.add(match)
        current_app.logger.info(
            f"[match-create] match={match.id} creator={creator.id} bet={bet_amount} invited={invited_user_id}"
        )
        return match

    def join(self, match_id, joiner_id):
        with self._locked(match_id) as match:
            if match.status != WAITING:
                raise MatchNotJoinable(match)
            if match.players[rules.X].id == joiner_id:
                raise SelfJoin(match)
            if match.invited_user_id is not None and match.invited_user_id != joiner_id:
                raise MatchNotJoinable(match)
            joiner = self._active_user(joiner_id)
            if joiner.balance < match.bet_amount:
                raise InsufficientFunds(match.bet_amount, joiner.balance, match)

            updated = match.with_join(PlayerRef(joiner.id, joiner.username), is_bot=joiner.is_bot)
            self._commit_snapshot(updated)
            self.registry.replace(updated)
        current_app.logger.info(f"[match-join] match={match_id} joiner={joiner_id}")
        return updated

    def play_bot(self, user_id, bet_amount):
        bot_id = self.bot_user_id()
        match = self.create(user_id, bet_amount)
        try:
            return self.join(match.id, bot_id)
        except Exception:
            self.abandon(match.id)
            raise

    def apply_move(self, match_id, player_id, cell_index):
        with self._locked(match_id) as match:
            if match.status != PLAYING:
                raise GameNotActive(match)
            mark = match.mark_of(player_id)
            if mark is None:
                raise NotAPlayer(match)
            if mark != match.current_turn:
                raise NotYourTurn(match)
            try:
                legal = rules.is_legal_move(match.board, cell_index)
            except InvalidIndex:
                raise InvalidIndex(cell_index, match) from None
            if not legal:
                raise IllegalMove(cell_index, match)

            updated = match.with_move(mark, cell_index)
            # Stake and board land in one database transaction or not at all
            try:
                ledger.adjust_balance(
                    player_id, -match.bet_amount, entry_type='bet', match_id=match.id, commit=False
                )
                store.save_snapshot(updated)
                db.session.commit()
            except InsufficientFunds as exc:
                db.session.rollback()
                exc.match = match
                raise
            except Exception:
                db.session.rollback()
                raise
            self.registry.replace(updated)
            current_app.logger.info(
                f"[move] match={match_id} player={player_id} mark={mark} cell={cell_index} "
                f"pot={updated.pot} status={updated.status}"
            )
            if updated.is_terminal:
                updated = self.settlement.settle(updated)
        return updated

    def forfeit(self, match_id, loser_id):
        with self._locked(match_id) as match:
            if match.status != PLAYING:
                raise GameNotActive(match)
            mark = match.mark_of(loser_id)
            if mark is None:
                raise NotAPlayer(match)
            updated = match.with_forfeit(mark)
            self._commit_snapshot(updated)
            self.registry.replace(updated)
            current_app.logger.info(f"[forfeit] match={match_id} loser={loser_id} winner={updated.winner}")
            updated = self.settlement.settle(updated)
        return updated

    def abandon(self, match_id):
        """Drop a match nobody joined. No stake has been charged yet."""
        with self._locked(match_id) as match:
            if match.status != WAITING:
                raise MatchNotJoinable(match)
            try:
                store.delete_snapshot(match_id)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            self.registry.remove(match_id)
        current_app.logger.info(f"[match-abandon] match={match_id}")
        return match

    def restore(self):
        """Register every unsettled snapshot again, e.g. after a restart.

        Waiting and playing matches resume where they stopped. Terminal
        matches whose payout never went through are settled now.
        """
        restored = []
        for record in store.unsettled_records():
            match = MatchState.from_record(record)
            if match.id in self.registry:
                continue
            self.registry.add(match)
            if match.is_terminal:
                match = self.settlement.settle(match)
            restored.append(match)
        if restored:
            current_app.logger.info(
                f"[match-restore] restored={len(restored)} "
                f"playing={sum(1 for m in restored if m.status == PLAYING)}"
            )
        return restored
