"""Room membership and event delivery for live sessions.

An endpoint is a Socket.IO sid. Each endpoint belongs to at most one room
and carries a tag: ``host`` or ``player:<id>``. Joining is idempotent and
never replays earlier events; a reconnecting client asks for the current
state itself (``sync-state``).
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple


HOST_TAG = 'host'


def player_tag(player_id) -> str:
    return f"player:{player_id}"


def player_id_from_tag(tag: Optional[str]) -> Optional[str]:
    if tag and tag.startswith('player:'):
        return tag[len('player:'):]
    return None


class RoomBroadcaster:
    def __init__(self, emit: Callable[..., None], namespace: str = '/ws'):
        # emit(event, payload, to=sid, namespace=...) as exposed by flask_socketio.SocketIO
        self._emit = emit
        self.namespace = namespace
        self._lock = threading.Lock()
        self._rooms: Dict[str, Dict[str, str]] = {}
        self._endpoint_room: Dict[str, str] = {}

    # ---- Membership ----

    def join(self, code: str, endpoint: str, tag: str) -> bool:
        """Add or re-tag an endpoint. Returns True if it was not already a member."""
        with self._lock:
            previous = self._endpoint_room.get(endpoint)
            if previous is not None and previous != code:
                self._rooms.get(previous, {}).pop(endpoint, None)
                if not self._rooms.get(previous):
                    self._rooms.pop(previous, None)
            members = self._rooms.setdefault(code, {})
            is_new = endpoint not in members
            members[endpoint] = tag
            self._endpoint_room[endpoint] = code
            return is_new

    def leave(self, endpoint: str, code: Optional[str] = None) -> Optional[Tuple[str, str]]:
        """Remove an endpoint. Returns ``(code, tag)`` it was registered under."""
        with self._lock:
            current = self._endpoint_room.get(endpoint)
            if current is None or (code is not None and current != code):
                return None
            self._endpoint_room.pop(endpoint, None)
            tag = self._rooms.get(current, {}).pop(endpoint, None)
            if not self._rooms.get(current):
                self._rooms.pop(current, None)
            return current, tag

    def drop_room(self, code: str) -> None:
        with self._lock:
            for endpoint in self._rooms.pop(code, {}):
                self._endpoint_room.pop(endpoint, None)

    def membership(self, endpoint: str) -> Optional[Tuple[str, str]]:
        with self._lock:
            code = self._endpoint_room.get(endpoint)
            if code is None:
                return None
            return code, self._rooms[code][endpoint]

    def members(self, code: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._rooms.get(code, {}))

    def host_endpoints(self, code: str) -> List[str]:
        return [e for e, tag in self.members(code).items() if tag == HOST_TAG]

    # ---- Delivery ----

    def send_to_one(self, endpoint: str, event: str, payload=None) -> None:
        self._emit(event, payload or {}, to=endpoint, namespace=self.namespace)

    def send_to_all(self, code: str, event: str, payload=None) -> None:
        for endpoint in self.members(code):
            self.send_to_one(endpoint, event, payload)

    def send_to_all_except(self, code: str, sender: str, event: str, payload=None) -> None:
        for endpoint in self.members(code):
            if endpoint != sender:
                self.send_to_one(endpoint, event, payload)

    def send_to_host(self, code: str, event: str, payload=None) -> None:
        for endpoint in self.host_endpoints(code):
            self.send_to_one(endpoint, event, payload)
