"""Session gateway: binds connections to users, routes inbound events to the
state machine and fans committed state back out.

The gateway is written against the small ``Transport`` protocol; the
Flask-SocketIO adapter lives in ``wagerplay.socketio_events``. It never
changes match fields itself, only calls state machine operations.
"""
from dataclasses import dataclass
import threading
from typing import Dict, Iterable, Optional, Protocol, Set

from flask import current_app

from wagerplay import db
from wagerplay.errors import GameError, InsufficientFunds, InviteNotFound, SelfJoin, UnknownUser
from wagerplay.events import (
    ERROR,
    INBOUND_TYPES,
    INVITE_RECEIVED,
    LOBBY_UPDATE,
    MATCH_UPDATE,
    AcceptInvite,
    CreateMatch,
    DeclineInvite,
    Invite,
    JoinMatch,
    Move,
    PlayBot,
    parse_inbound,
)
from wagerplay.models import User, utcnow
from .state import PLAYING, WAITING


class Transport(Protocol):
    def emit(self, event: str, payload, sids: Iterable[str]) -> None:
        ...


class SessionTable:
    """connection id <-> user id, plus when each user lost their last connection."""

    def __init__(self):
        self._user_by_sid: Dict[str, int] = {}
        self._sids_by_user: Dict[int, Set[str]] = {}
        self._disconnected_since: Dict[int, object] = {}
        self._lock = threading.Lock()

    def bind(self, sid, user_id):
        with self._lock:
            self._user_by_sid[sid] = user_id
            self._sids_by_user.setdefault(user_id, set()).add(sid)
            self._disconnected_since.pop(user_id, None)

    def unbind(self, sid, now=None):
        with self._lock:
            user_id = self._user_by_sid.pop(sid, None)
            if user_id is None:
                return None
            sids = self._sids_by_user.get(user_id, set())
            sids.discard(sid)
            if not sids:
                self._sids_by_user.pop(user_id, None)
                self._disconnected_since[user_id] = now or utcnow()
            return user_id

    def user_for(self, sid):
        with self._lock:
            return self._user_by_sid.get(sid)

    def sids_for(self, user_id):
        with self._lock:
            return set(self._sids_by_user.get(user_id, ()))

    def connected_users(self):
        with self._lock:
            return {uid: set(sids) for uid, sids in self._sids_by_user.items()}

    def disconnected_since(self, user_id):
        with self._lock:
            return self._disconnected_since.get(user_id)

    def mark_absent(self, user_id, since):
        """Start the absence clock for a user with no connection at all."""
        with self._lock:
            if user_id not in self._sids_by_user:
                self._disconnected_since.setdefault(user_id, since)

    def forget(self, user_id):
        with self._lock:
            self._disconnected_since.pop(user_id, None)

    def prune_absent(self, keep):
        """Forget absences of users outside ``keep``. Returns how many were dropped."""
        with self._lock:
            stale = [uid for uid in self._disconnected_since if uid not in keep]
            for uid in stale:
                del self._disconnected_since[uid]
        return len(stale)


@dataclass(frozen=True)
class PendingInvite:
    match_id: str
    from_user_id: int
    to_user_id: int
    bet_amount: int
    created_at: object


class InviteBook:
    """Ephemeral invitations keyed by the private match they point at."""

    def __init__(self):
        self._invites: Dict[str, PendingInvite] = {}
        self._lock = threading.Lock()

    def add(self, invite: PendingInvite):
        with self._lock:
            self._invites[invite.match_id] = invite
        return invite

    def get_for(self, match_id, user_id) -> PendingInvite:
        with self._lock:
            invite = self._invites.get(match_id)
        if invite is None or invite.to_user_id != user_id:
            raise InviteNotFound(match_id)
        return invite

    def discard(self, match_id) -> Optional[PendingInvite]:
        with self._lock:
            return self._invites.pop(match_id, None)

    def expired(self, cutoff):
        with self._lock:
            return [i for i in self._invites.values() if i.created_at < cutoff]

    def __len__(self):
        with self._lock:
            return len(self._invites)


class SessionGateway:

    def __init__(self, state_machine, registry, transport, bot_strategy, defer=None):
        self.state_machine = state_machine
        self.registry = registry
        self.transport = transport
        self.bot_strategy = bot_strategy
        # Runs bot turns; None means inline
        self._defer = defer
        self.sessions = SessionTable()
        self.invites = InviteBook()
        self._handlers = {
            CreateMatch: self._on_create_match,
            JoinMatch: self._on_join_match,
            Move: self._on_move,
            Invite: self._on_invite,
            AcceptInvite: self._on_accept_invite,
            DeclineInvite: self._on_decline_invite,
            PlayBot: self._on_play_bot,
        }
        unhandled = set(INBOUND_TYPES) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No gateway handler for {sorted(t.__name__ for t in unhandled)}")

    # ---- connection lifecycle ----

    def connect(self, sid, claimed_user_id):
        """Bind ``sid`` to a known, active user or raise UnknownUser."""
        user_id = _as_user_id(claimed_user_id)
        user = db.session.get(User, user_id) if user_id is not None else None
        if user is None or not user.is_active or user.is_bot:
            raise UnknownUser(claimed_user_id)

        self.sessions.bind(sid, user.id)
        current_app.logger.info(f"[connect] sid={sid} user={user.id}")
        self.transport.emit(LOBBY_UPDATE, {'matches': self.lobby()}, [sid])
        for match in self._matches_of(user.id):
            self.transport.emit(MATCH_UPDATE, match.to_dict(), [sid])
        return user

    def disconnect(self, sid, now=None):
        user_id = self.sessions.unbind(sid, now)
        if user_id is not None:
            current_app.logger.info(f"[disconnect] sid={sid} user={user_id}")
            # Absence only matters while the user has a match to forfeit
            if not self._matches_of(user_id):
                self.sessions.forget(user_id)
        return user_id

    def restore(self, now=None):
        """Take back unsettled matches from the database after a restart.

        Pending invitations come back with their private match. Nobody is
        connected yet, so every human in a playing match starts the
        disconnect grace period now and forfeits if they never return.
        """
        now = now or utcnow()
        restored = self.state_machine.restore()
        for match in restored:
            if match.status == WAITING and match.invited_user_id is not None:
                self.invites.add(PendingInvite(
                    match_id=match.id,
                    from_user_id=match.players['X'].id,
                    to_user_id=match.invited_user_id,
                    bet_amount=match.bet_amount,
                    created_at=match.created_at,
                ))
            if match.status != PLAYING:
                continue
            humans = [match.players['X'].id] if match.is_bot_match else match.player_ids()
            for user_id in humans:
                self.sessions.mark_absent(user_id, now)
            if self._is_bot_turn(match):
                self._schedule_bot_turn(match.id)
        return restored

    # ---- inbound ----

    def handle(self, sid, name, payload):
        """Dispatch one inbound event; domain failures become ``error`` events."""
        user_id = self.sessions.user_for(sid)
        try:
            if user_id is None:
                raise UnknownUser(None)
            event = parse_inbound(name, payload)
            self._handlers[type(event)](sid, user_id, event)
        except GameError as exc:
            current_app.logger.info(f"[rejected] sid={sid} user={user_id} event={name} code={exc.code}")
            self.transport.emit(ERROR, exc.to_dict(), [sid])
        except Exception:
            current_app.logger.exception(f"[gateway-error] sid={sid} user={user_id} event={name}")
            self.transport.emit(ERROR, {'code': 'internal_error', 'message': 'Internal server error'}, [sid])

    def _on_create_match(self, sid, user_id, event):
        match = self.state_machine.create(user_id, event.bet_amount)
        self.publish_match(match)
        self.publish_lobby()

    def _on_join_match(self, sid, user_id, event):
        match = self.state_machine.join(event.match_id, user_id)
        self.publish_match(match)
        self.publish_lobby()

    def _on_move(self, sid, user_id, event):
        match = self.state_machine.apply_move(event.match_id, user_id, event.cell_index)
        self.after_move(match)

    def _on_invite(self, sid, user_id, event):
        if event.to_user_id == user_id:
            raise SelfJoin()
        match = self.state_machine.create(user_id, event.bet_amount, invited_user_id=event.to_user_id)
        self.invites.add(PendingInvite(
            match_id=match.id,
            from_user_id=user_id,
            to_user_id=event.to_user_id,
            bet_amount=match.bet_amount,
            created_at=match.created_at,
        ))
        self.transport.emit(INVITE_RECEIVED, {
            'fromUser': match.players['X'].to_dict(),
            'matchId': match.id,
            'betAmount': match.bet_amount,
        }, self.sessions.sids_for(event.to_user_id))
        self.publish_match(match)

    def _on_accept_invite(self, sid, user_id, event):
        self.invites.get_for(event.match_id, user_id)
        match = self.state_machine.join(event.match_id, user_id)
        self.invites.discard(event.match_id)
        self.publish_match(match)
        self.publish_lobby()

    def _on_decline_invite(self, sid, user_id, event):
        self.invites.get_for(event.match_id, user_id)
        self.invites.discard(event.match_id)
        self.state_machine.abandon(event.match_id)
        current_app.logger.info(f"[invite-declined] match={event.match_id} user={user_id}")

    def _on_play_bot(self, sid, user_id, event):
        match = self.state_machine.play_bot(user_id, event.bet_amount)
        self.publish_match(match)
        self.publish_lobby()

    # ---- bot turns ----

    def after_move(self, match):
        self.publish_match(match)
        if match.is_terminal:
            self.publish_lobby()
        elif self._is_bot_turn(match):
            self._schedule_bot_turn(match.id)

    def _schedule_bot_turn(self, match_id):
        if self._defer is None:
            self.play_bot_turn(match_id)
        else:
            self._defer(self.play_bot_turn, match_id)

    def _is_bot_turn(self, match):
        if not match.is_bot_match or match.status != PLAYING:
            return False
        return match.mark_of(self.state_machine.bot_user_id()) == match.current_turn

    def play_bot_turn(self, match_id):
        match = self.registry.get(match_id)
        if match is None or not self._is_bot_turn(match):
            return None
        bot_id = self.state_machine.bot_user_id()
        cell = self.bot_strategy.choose_move(list(match.board), match.mark_of(bot_id))
        try:
            updated = self.state_machine.apply_move(match_id, bot_id, cell)
        except InsufficientFunds:
            current_app.logger.error(f"[bot] match={match_id} bot cannot cover the stake, forfeiting")
            updated = self.state_machine.forfeit(match_id, bot_id)
        except GameError as exc:
            current_app.logger.warning(f"[bot] match={match_id} move rejected code={exc.code}")
            return None
        self.after_move(updated)
        return updated

    # ---- outbound ----

    def lobby(self):
        return [
            m.to_dict()
            for m in self.registry.list(status=WAITING, predicate=lambda m: m.invited_user_id is None)
        ]

    def publish_match(self, match):
        sids = set()
        for user_id in match.player_ids():
            sids |= self.sessions.sids_for(user_id)
        self.transport.emit(MATCH_UPDATE, match.to_dict(), sids)

    def publish_lobby(self):
        busy = set()
        for match in self.registry.list(status=PLAYING):
            busy.update(match.player_ids())
        sids = [
            sid
            for user_id, user_sids in self.sessions.connected_users().items()
            if user_id not in busy
            for sid in user_sids
        ]
        self.transport.emit(LOBBY_UPDATE, {'matches': self.lobby()}, sids)

    def _matches_of(self, user_id):
        return self.registry.list(predicate=lambda m: user_id in m.player_ids())


def _as_user_id(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
