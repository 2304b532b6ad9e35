from flask import current_app, request
from flask_login import current_user
from flask_socketio import ConnectionRefusedError

from wagerplay import socketio
from wagerplay.errors import UnknownUser
from wagerplay.events import INBOUND
from wagerplay.services.matches import get_gateway

NAMESPACE = '/ws'


class SocketIOTransport:
    """Targeted emits over the Flask-SocketIO server on ``/ws``."""

    def __init__(self, namespace=NAMESPACE):
        self.namespace = namespace

    def emit(self, event, payload, sids):
        for sid in sids:
            socketio.emit(event, payload, to=sid, namespace=self.namespace)


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _claimed_user_id(auth):
    if isinstance(auth, dict) and auth.get('user_id') is not None:
        return auth['user_id']
    if request.args.get('user_id'):
        return request.args['user_id']
    if current_user and current_user.is_authenticated:
        return current_user.id
    return None


def handle_connect(auth=None):
    claimed = _claimed_user_id(auth)
    try:
        get_gateway().connect(_get_sid(), claimed)
    except UnknownUser as exc:
        current_app.logger.info(f"[connect-refused] sid={_get_sid()} claimed={claimed!r}")
        raise ConnectionRefusedError(exc.message, exc.to_dict())
    socketio.emit('connected', {'message': 'Connected to /ws'}, to=_get_sid(), namespace=NAMESPACE)


def handle_disconnect(*args):
    get_gateway().disconnect(_get_sid())


def handle_ping(data=None):
    socketio.emit('pong', data or {}, to=_get_sid(), namespace=NAMESPACE)


def _make_handler(name):
    def _handler(data=None):
        get_gateway().handle(_get_sid(), name, data)
    _handler.__name__ = f"handle_{name}"
    return _handler


def register_socketio_handlers() -> None:
    """Register the connection hooks and one handler per inbound event on '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
    for name in INBOUND:
        socketio.on_event(name, _make_handler(name), namespace=NAMESPACE)
