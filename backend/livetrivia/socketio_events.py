from flask import current_app, request
from flask_socketio import ConnectionRefusedError, emit
from functools import wraps
from typing import Any, Dict

from livetrivia import socketio
from livetrivia.errors import AuthenticationFailure, TriviaError, ValidationFailure
from livetrivia.services.lobbies import validate_lobby_id


class SocketIOGateway:
    """Room-based publish/subscribe over one Socket.IO namespace.

    Usable from handlers and from background timer workers alike.
    """

    def __init__(self, sio, namespace='/ws'):
        self.socketio = sio
        self.namespace = namespace

    def emit(self, event, data, room, skip_sid=None):
        self.socketio.emit(event, data, to=room, skip_sid=skip_sid, namespace=self.namespace)

    def send(self, sid, event, data):
        self.socketio.emit(event, data, to=sid, namespace=self.namespace)

    def enter_room(self, sid, room):
        self.socketio.server.enter_room(sid, room, namespace=self.namespace)

    def leave_room(self, sid, room):
        self.socketio.server.leave_room(sid, room, namespace=self.namespace)

    def disconnect(self, sid):
        self.socketio.server.disconnect(sid, namespace=self.namespace)

    def room_members(self, room):
        return [sid for sid, _ in self.socketio.server.manager.get_participants(self.namespace, room)]


# sid -> {'lobby_id', 'identity', 'is_host'}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore


def _orchestrator():
    return current_app.extensions['livetrivia'].orchestrator


def _payload(data) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailure('Invalid payload')
    return data


def _lobby_id_from(data) -> str:
    # host-end-question / host-end-game send the bare lobby id
    if isinstance(data, str):
        return validate_lobby_id(data)
    data = _payload(data)
    if not data.get('lobbyId'):
        raise ValidationFailure('lobbyId is required')
    return validate_lobby_id(data['lobbyId'])


def socket_handler(fn):
    """Convert failures into an ``error`` event for the calling connection only."""
    @wraps(fn)
    def wrapper(*args):
        try:
            return fn(*args)
        except TriviaError as exc:
            current_app.logger.info(f"[socket-reject] event={fn.__name__} sid={_get_sid()}: {exc.message}")
            emit('error', {'message': exc.message})
        except Exception:
            current_app.logger.exception(f"[socket-error] event={fn.__name__} sid={_get_sid()}")
            emit('error', {'message': 'Something went wrong, please retry'})
    return wrapper


def handle_connect(auth=None):
    auth = auth if isinstance(auth, dict) else {}
    services = current_app.extensions['livetrivia']
    token = auth.get('token') or request.cookies.get('wsToken')
    try:
        identity = services.verifier.verify(token)
        lobby_id = validate_lobby_id(auth.get('lobbyName') or current_app.config['DEFAULT_LOBBY_ID'])
    except (AuthenticationFailure, ValidationFailure) as exc:
        current_app.logger.info(f"[auth-reject] sid={_get_sid()}: {exc.message}")
        raise ConnectionRefusedError(exc.message)

    is_host = auth.get('isHost') is True
    sid = _get_sid()
    _sid_to_ctx[sid] = {'lobby_id': lobby_id, 'identity': identity, 'is_host': is_host}
    current_app.logger.info(
        f"[connect] sid={sid} user={identity.user_id} lobby={lobby_id} host={is_host}"
    )
    try:
        if is_host:
            services.orchestrator.host_connect(lobby_id, identity, sid)
        else:
            services.orchestrator.player_connect(lobby_id, identity, sid)
    except TriviaError as exc:
        _sid_to_ctx.pop(sid, None)
        current_app.logger.info(f"[join-reject] sid={sid} lobby={lobby_id}: {exc.message}")
        raise ConnectionRefusedError(exc.message)


def handle_disconnect(reason=None):
    sid = _get_sid()
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx or not ctx.get('lobby_id'):
        return
    try:
        if ctx['is_host']:
            _orchestrator().host_disconnect(ctx['lobby_id'], sid)
        else:
            _orchestrator().player_disconnect(ctx['lobby_id'], ctx['identity'].user_id, sid)
    except TriviaError as exc:
        current_app.logger.warning(f"[disconnect-error] sid={sid} lobby={ctx['lobby_id']}: {exc.message}")


@socket_handler
def handle_leave_lobby(data=None):
    sid = _get_sid()
    ctx = _sid_to_ctx.get(sid)
    if not ctx or not ctx.get('lobby_id'):
        return
    lobby_id = ctx['lobby_id']
    ctx['lobby_id'] = None
    if ctx['is_host']:
        services = current_app.extensions['livetrivia']
        services.orchestrator.host_disconnect(lobby_id, sid)
        services.gateway.leave_room(sid, lobby_id)
    else:
        _orchestrator().player_disconnect(lobby_id, ctx['identity'].user_id, sid, explicit=True)
    emit('left', {'room': lobby_id})


@socket_handler
def handle_submit_answer(data):
    data = _payload(data)
    sid = _get_sid()
    ctx = _sid_to_ctx.get(sid)
    if not ctx or not ctx.get('lobby_id'):
        raise ValidationFailure('You are not in a lobby')
    _orchestrator().submit_answer(
        ctx['lobby_id'], ctx['identity'].user_id, sid, data.get('answer'), question_id=data.get('questionId'),
    )


@socket_handler
def handle_host_start_countdown(data):
    data = _payload(data)
    lobby_id = _lobby_id_from(data)
    orchestrator = _orchestrator()
    orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.start_countdown(
        lobby_id, data.get('countdownSeconds'), data.get('questionIndex'), round_id=data.get('roundId'),
    )


@socket_handler
def handle_host_start_question(data):
    data = _payload(data)
    lobby_id = _lobby_id_from(data)
    orchestrator = _orchestrator()
    orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.start_question(lobby_id, data.get('questionIndex'), round_id=data.get('roundId'))


@socket_handler
def handle_host_end_question(data):
    lobby_id = _lobby_id_from(data)
    orchestrator = _orchestrator()
    orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.end_question(lobby_id)


@socket_handler
def handle_host_end_game(data):
    lobby_id = _lobby_id_from(data)
    orchestrator = _orchestrator()
    orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.end_game(lobby_id)


@socket_handler
def handle_host_change_round(data):
    data = _payload(data)
    lobby_id = _lobby_id_from(data)
    if not data.get('roundId'):
        raise ValidationFailure('roundId is required')
    orchestrator = _orchestrator()
    orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.change_round(
        lobby_id, data['roundId'], round_index=data.get('roundIndex'), round_name=data.get('roundName'),
    )


@socket_handler
def handle_host_stream_control(data):
    data = _payload(data)
    lobby_id = _lobby_id_from(data)
    orchestrator = _orchestrator()
    host = orchestrator.require_host(lobby_id, _get_sid())
    orchestrator.stream_control(lobby_id, data.get('action'), data.get('value'), from_name=host.get('name'))


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('leave-lobby', handle_leave_lobby, namespace=namespace)
    socketio.on_event('submit-answer', handle_submit_answer, namespace=namespace)
    socketio.on_event('host-start-countdown', handle_host_start_countdown, namespace=namespace)
    socketio.on_event('host-start-question', handle_host_start_question, namespace=namespace)
    socketio.on_event('host-end-question', handle_host_end_question, namespace=namespace)
    socketio.on_event('host-end-game', handle_host_end_game, namespace=namespace)
    socketio.on_event('host-change-round', handle_host_change_round, namespace=namespace)
    socketio.on_event('host-stream-control', handle_host_stream_control, namespace=namespace)
