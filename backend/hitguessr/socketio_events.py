from flask import current_app, request
from flask_socketio import emit
from typing import Any, Callable, Dict, Optional

from hitguessr.services.games.broker import NAMESPACE
from hitguessr.services.games.coordinator import (
    get_coordinator,
    parse_game_id,
    parse_guess,
    parse_round_number,
)
from hitguessr.services.games.errors import AuthenticationError, GameError, InvalidRequestError
from hitguessr.services.games.types import Identity


def _extract_token(auth: Any) -> Optional[str]:
    """Bearer token from the handshake ``auth`` payload, else the ``token`` query arg."""
    if isinstance(auth, dict):
        token = auth.get('token')
        if isinstance(token, str) and token:
            return token
    token = request.args.get('token')
    if token:
        return token
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):]
    return None


class ConnectionGateway:
    """Authenticates Socket.IO connections and routes their commands to room sessions."""

    def __init__(self):
        self._connections: Dict[str, Identity] = {}

    def identity(self, sid: str) -> Optional[Identity]:
        return self._connections.get(sid)

    # ---- connection lifecycle -------------------------------------------
    def handle_connect(self, auth=None):
        coordinator = get_coordinator()
        try:
            identity = coordinator.identity.resolve(_extract_token(auth))
        except AuthenticationError as exc:
            current_app.logger.info(f"[connect-refused] sid={request.sid} code={exc.code}")
            raise ConnectionRefusedError("Authentication error") from exc
        self._connections[request.sid] = identity
        current_app.logger.info(f"[connect] user={identity.user_id} sid={request.sid}")
        emit('connected', {'user': identity.to_dict()})

    def handle_disconnect(self, *args):
        # Dropping a connection only stops delivery; room state is untouched
        sid = request.sid
        identity = self._connections.pop(sid, None)
        dropped = get_coordinator().broker.unsubscribe(sid)
        if identity:
            current_app.logger.info(f"[disconnect] user={identity.user_id} sid={sid} rooms={sorted(dropped)}")

    # ---- commands ---------------------------------------------------------
    def _dispatch(self, command: str, handler: Callable[[Identity, str, Any], None], data: Any) -> None:
        sid = request.sid
        identity = self._connections.get(sid)
        try:
            if identity is None:
                raise AuthenticationError('Authentication error')
            handler(identity, sid, data)
        except GameError as exc:
            current_app.logger.info(f"[reject] command={command} sid={sid} kind={exc.kind} code={exc.code}")
            emit('error', exc.to_dict(), to=sid)

    def join_game(self, identity: Identity, sid: str, data: Any) -> None:
        session = get_coordinator().session(parse_game_id(data))
        session.attach(identity, sid)

    def leave_game(self, identity: Identity, sid: str, data: Any) -> None:
        session = get_coordinator().session(parse_game_id(data))
        session.detach(identity, sid)

    def start_game(self, identity: Identity, sid: str, data: Any) -> None:
        session = get_coordinator().session(parse_game_id(data))
        session.start(identity.user_id)

    def submit_answer(self, identity: Identity, sid: str, data: Any) -> None:
        if not isinstance(data, dict):
            raise InvalidRequestError('submit-answer expects an object payload')
        session = get_coordinator().session(parse_game_id(data))
        session.submit_answer(identity.user_id, parse_round_number(data), parse_guess(data), reply_to=sid)

    def handle_ping(self, data=None):
        emit('pong', data or {})

    def register(self, socketio, namespace: str = NAMESPACE) -> None:
        socketio.on_event('connect', self.handle_connect, namespace=namespace)
        socketio.on_event('disconnect', self.handle_disconnect, namespace=namespace)
        socketio.on_event('ping', self.handle_ping, namespace=namespace)
        for event, handler in (
            ('join-game', self.join_game),
            ('leave-game', self.leave_game),
            ('start-game', self.start_game),
            ('submit-answer', self.submit_answer),
        ):
            socketio.on_event(event, self._bind(event, handler), namespace=namespace)

    def _bind(self, command: str, handler):
        def _handler(data=None):
            self._dispatch(command, handler, data)
        _handler.__name__ = f"on_{command.replace('-', '_')}"
        return _handler


def register_socketio_handlers(socketio) -> ConnectionGateway:
    """Register the game gateway on the ``/ws`` namespace."""
    gateway = ConnectionGateway()
    gateway.register(socketio)
    return gateway
