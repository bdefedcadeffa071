# classes/presence_registry.py
import asyncio
import json
import logging
import threading
from typing import Any, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger("planner_relay")


class PresenceSession:
    """
    One open channel connection.

    Wraps anything with an async `send_text(str)` (a Starlette WebSocket in
    production, a fake in tests). Sends are serialized per connection; a
    failed send marks the session closed instead of raising.
    """

    def __init__(self, transport: Any, user_id: str | None = None, username: str | None = None,
                 authenticated: bool = False, role: str = "user"):
        self.connection_id = uuid4().hex
        self.transport = transport
        self.user_id = user_id
        self.username = username
        self.authenticated = authenticated
        self.role = role
        self.portfolio_id: Optional[str] = None
        self.closed = False
        self._send_lock = asyncio.Lock()

    def describe(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "username": self.username}

    async def send(self, event: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            text = json.dumps(event, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Dropping unserializable %s event: %s", event.get("type"), e)
            return False

        async with self._send_lock:
            if self.closed:
                return False
            try:
                await self.transport.send_text(text)
                return True
            except Exception as e:
                self.closed = True
                logger.debug("Send to connection %s failed, marking closed: %s", self.connection_id, e)
                return False

    def __repr__(self) -> str:
        return f"PresenceSession({self.connection_id[:8]}, user={self.user_id!r}, portfolio={self.portfolio_id!r})"


class PortfolioRegistry:
    """
    In-memory portfolio -> connections map for a single relay process.

    - A connection belongs to at most one portfolio group; joining another
      one leaves the previous group first.
    - Empty groups are deleted.
    - Readers get snapshots, so fan-out never iterates a live dict.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # portfolio_id -> {connection_id: PresenceSession}
        self._groups: Dict[str, Dict[str, PresenceSession]] = {}

    def _remove_unlocked(self, portfolio_id: str, session: PresenceSession) -> bool:
        group = self._groups.get(portfolio_id)
        if group is None or session.connection_id not in group:
            return False
        del group[session.connection_id]
        if not group:
            del self._groups[portfolio_id]
        return True

    def join(self, session: PresenceSession, portfolio_id: str) -> Optional[str]:
        """
        Register `session` under `portfolio_id`.
        Returns the portfolio it implicitly left, if any.
        """
        pid = str(portfolio_id)
        with self._lock:
            previous = session.portfolio_id
            if previous is not None and previous != pid:
                self._remove_unlocked(previous, session)
            else:
                previous = None
            self._groups.setdefault(pid, {})[session.connection_id] = session
            session.portfolio_id = pid
        return previous

    def leave(self, session: PresenceSession) -> Optional[str]:
        """Remove `session` from its group. Returns the portfolio it left."""
        with self._lock:
            pid = session.portfolio_id
            if pid is None:
                return None
            self._remove_unlocked(pid, session)
            session.portfolio_id = None
            return pid

    def disconnect(self, session: PresenceSession) -> List[str]:
        """Remove `session` from every group it is found in."""
        left: List[str] = []
        with self._lock:
            for pid in list(self._groups):
                if self._remove_unlocked(pid, session):
                    left.append(pid)
            session.portfolio_id = None
        return left

    def members(self, portfolio_id: str, exclude: str | None = None) -> List[PresenceSession]:
        with self._lock:
            group = self._groups.get(str(portfolio_id), {})
            return [s for cid, s in group.items() if cid != exclude]

    def roster(self, portfolio_id: str) -> List[Dict[str, Any]]:
        return [s.describe() for s in self.members(portfolio_id)]

    def portfolio_ids(self) -> List[str]:
        with self._lock:
            return list(self._groups)

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(g) for g in self._groups.values())

    def clear(self) -> None:
        with self._lock:
            for group in self._groups.values():
                for session in group.values():
                    session.portfolio_id = None
            self._groups.clear()
