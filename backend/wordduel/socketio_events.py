from flask import current_app, request
from flask_socketio import emit

CLIENT_MESSAGE_TYPES = (
    'join_queue',
    'leave_queue',
    'create_duel',
    'join_duel',
    'set_word',
    'commit_guess',
    'reveal_guess',
)


def _registry():
    return current_app.extensions['duel_registry']


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    _registry().disconnect(_get_sid())


def handle_message(data):
    """Generic entry point: ``{type, ...payload}``."""
    _registry().route(_get_sid(), data)


def _typed_handler(msg_type: str):
    def handler(data=None):
        message = dict(data) if isinstance(data, dict) else data
        if isinstance(message, dict):
            message['type'] = msg_type
        _registry().route(_get_sid(), message)
    handler.__name__ = f'handle_{msg_type}'
    return handler


def handle_ping(data):
    emit('pong', data or {})


def _register_on(socketio, namespace: str) -> None:
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
    for msg_type in CLIENT_MESSAGE_TYPES:
        socketio.on_event(msg_type, _typed_handler(msg_type), namespace=namespace)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from wordduel import socketio

    _register_on(socketio, '/ws')
    if testing:
        _register_on(socketio, '/')
