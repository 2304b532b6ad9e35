"""Socket event vocabulary.

Inbound events form a closed set of frozen dataclasses. ``parse_inbound``
is the only way a raw Socket.IO payload becomes one of them, so handlers
never see an unchecked dict.
"""
from dataclasses import dataclass, fields
from numbers import Real

from wagerplay.errors import MalformedPayload


@dataclass(frozen=True)
class CreateMatch:
    bet_amount: Real


@dataclass(frozen=True)
class JoinMatch:
    match_id: str


@dataclass(frozen=True)
class Move:
    match_id: str
    cell_index: Real


@dataclass(frozen=True)
class Invite:
    to_user_id: int
    bet_amount: Real


@dataclass(frozen=True)
class AcceptInvite:
    match_id: str


@dataclass(frozen=True)
class DeclineInvite:
    match_id: str


@dataclass(frozen=True)
class PlayBot:
    bet_amount: Real


# wire name -> (event type, {payload key: field name})
INBOUND = {
    'create_match': (CreateMatch, {'betAmount': 'bet_amount'}),
    'join_match': (JoinMatch, {'matchId': 'match_id'}),
    'move': (Move, {'matchId': 'match_id', 'cellIndex': 'cell_index'}),
    'invite': (Invite, {'toUserId': 'to_user_id', 'betAmount': 'bet_amount'}),
    'accept_invite': (AcceptInvite, {'matchId': 'match_id'}),
    'decline_invite': (DeclineInvite, {'matchId': 'match_id'}),
    'play_bot': (PlayBot, {'betAmount': 'bet_amount'}),
}
INBOUND_TYPES = tuple(event_type for event_type, _ in INBOUND.values())

MATCH_UPDATE = 'match_update'
LOBBY_UPDATE = 'lobby_update'
INVITE_RECEIVED = 'invite_received'
ERROR = 'error'


def _coerce(event_type, field_name, value, key):
    expected = {f.name: f.type for f in fields(event_type)}[field_name]
    if expected is str:
        if not isinstance(value, str) or not value:
            raise MalformedPayload(f"'{key}' must be a non-empty string")
        return value
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedPayload(f"'{key}' must be an integer")
        return value
    # Real: any JSON number; range and integrality are domain checks
    if isinstance(value, bool) or not isinstance(value, Real):
        raise MalformedPayload(f"'{key}' must be a number")
    return value


def parse_inbound(name, payload):
    if name not in INBOUND:
        raise MalformedPayload(f"Unknown event: {name!r}")
    if not isinstance(payload, dict):
        raise MalformedPayload(f"'{name}' expects an object payload")
    event_type, keys = INBOUND[name]
    values = {}
    for key, field_name in keys.items():
        if key not in payload:
            raise MalformedPayload(f"'{key}' is required")
        values[field_name] = _coerce(event_type, field_name, payload[key], key)
    return event_type(**values)
