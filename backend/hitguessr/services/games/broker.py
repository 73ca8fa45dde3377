import threading
from collections import defaultdict
from typing import Any, Dict, Optional, Set

NAMESPACE = '/ws'


def room_name(game_id: str) -> str:
    return f"game:{game_id}"


class RoomBroker:
    """Publish/subscribe over Socket.IO rooms, one room per game."""

    def __init__(self, socketio, namespace: str = NAMESPACE):
        self._socketio = socketio
        self.namespace = namespace
        self._memberships: Dict[str, Set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, sid: str, game_id: str) -> None:
        self._socketio.server.enter_room(sid, room_name(game_id), namespace=self.namespace)
        with self._lock:
            self._memberships[sid].add(game_id)

    def unsubscribe(self, sid: str, game_id: Optional[str] = None) -> Set[str]:
        """Drop one subscription, or every subscription of ``sid`` when no game is given."""
        with self._lock:
            current = self._memberships.get(sid, set())
            dropped = {game_id} & current if game_id else set(current)
            current -= dropped
            if not current:
                self._memberships.pop(sid, None)
        for gid in dropped:
            self._socketio.server.leave_room(sid, room_name(gid), namespace=self.namespace)
        return dropped

    def is_subscribed(self, sid: str, game_id: str) -> bool:
        with self._lock:
            return game_id in self._memberships.get(sid, set())

    def publish(self, game_id: str, event: str, payload: Any, skip_sid: Optional[str] = None) -> None:
        self._socketio.emit(event, payload, to=room_name(game_id), namespace=self.namespace, skip_sid=skip_sid)

    def send(self, sid: str, event: str, payload: Any) -> None:
        self._socketio.emit(event, payload, to=sid, namespace=self.namespace)
