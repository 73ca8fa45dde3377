from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Dict, List, Optional

from .errors import NotFoundError

if TYPE_CHECKING:
    from .session import RoomSession


class RoomRegistry:
    """Live rooms for this process, keyed by game id.

    Sessions are inserted on creation and evicted when they reach a
    terminal status.
    """

    def __init__(self):
        self._rooms: Dict[str, RoomSession] = {}
        self._lock = threading.Lock()

    def add(self, session: RoomSession) -> None:
        with self._lock:
            self._rooms[session.game_id] = session

    def get(self, game_id: str) -> Optional[RoomSession]:
        with self._lock:
            return self._rooms.get(game_id)

    def require(self, game_id: str) -> RoomSession:
        session = self.get(game_id)
        if session is None:
            raise NotFoundError('Game not found', code='room_not_found')
        return session

    def remove(self, game_id: str) -> Optional[RoomSession]:
        with self._lock:
            return self._rooms.pop(game_id, None)

    def all(self) -> List[RoomSession]:
        with self._lock:
            return list(self._rooms.values())

    def __contains__(self, game_id: str) -> bool:
        with self._lock:
            return game_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)
