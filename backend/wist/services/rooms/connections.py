"""Which live connections belong to which user.

Used to fan invites out to every tab or device a user has open.
"""

import threading
from collections import defaultdict
from typing import Dict, Optional, Set


class ConnectionDirectory:
    def __init__(self):
        self._by_user: Dict[int, Set[str]] = defaultdict(set)
        self._owner: Dict[str, int] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, connection_id: str) -> None:
        with self._lock:
            previous = self._owner.get(connection_id)
            if previous is not None and previous != user_id:
                self._discard(previous, connection_id)
            self._owner[connection_id] = user_id
            self._by_user[user_id].add(connection_id)

    def unregister(self, connection_id: str) -> Optional[int]:
        with self._lock:
            user_id = self._owner.pop(connection_id, None)
            if user_id is not None:
                self._discard(user_id, connection_id)
            return user_id

    def connections_for(self, user_id: int) -> Set[str]:
        with self._lock:
            return set(self._by_user.get(user_id, ()))

    def _discard(self, user_id: int, connection_id: str) -> None:
        conns = self._by_user.get(user_id)
        if conns is None:
            return
        conns.discard(connection_id)
        if not conns:
            del self._by_user[user_id]
