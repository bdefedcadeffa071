# classes/claim_ledger.py
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

ClaimKey = Tuple[str, str, Optional[str]]


@dataclass
class ActiveFieldClaim:
    portfolio_id: str
    field_id: str
    task_id: Optional[str]
    connection_id: str
    user_id: Optional[str]
    username: Optional[str]
    expires_at: float

    @property
    def key(self) -> ClaimKey:
        return (self.portfolio_id, self.field_id, self.task_id)

    def to_event_fields(self) -> dict:
        return {
            "portfolioId": self.portfolio_id,
            "fieldId": self.field_id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "username": self.username,
        }


class ClaimLedger:
    """
    Who is editing which field, with a sliding TTL.

    - One claimant per (portfolio, field, task) key; a second focus overwrites.
    - A claim lives ttl_seconds past its last focus/change/heartbeat.
    - sweep_expired() hands back what it removed so the caller can announce it.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._claims: Dict[ClaimKey, ActiveFieldClaim] = {}

    def claim(self, portfolio_id: str, field_id: str, task_id: Optional[str], connection_id: str,
              user_id: Optional[str], username: Optional[str]) -> Optional[ActiveFieldClaim]:
        """Record a claim. Returns the claim it displaced, if another connection held it."""
        key = (str(portfolio_id), str(field_id), task_id)
        with self._lock:
            displaced = self._claims.get(key)
            self._claims[key] = ActiveFieldClaim(
                portfolio_id=key[0],
                field_id=key[1],
                task_id=task_id,
                connection_id=connection_id,
                user_id=user_id,
                username=username,
                expires_at=self._clock() + self.ttl_seconds,
            )
        if displaced is not None and displaced.connection_id == connection_id:
            return None
        return displaced

    def release(self, portfolio_id: str, field_id: str, task_id: Optional[str],
                connection_id: str) -> Optional[ActiveFieldClaim]:
        """Drop the claim if `connection_id` still holds it."""
        key = (str(portfolio_id), str(field_id), task_id)
        with self._lock:
            current = self._claims.get(key)
            if current is None or current.connection_id != connection_id:
                return None
            del self._claims[key]
            return current

    def refresh(self, connection_id: str, key: Optional[ClaimKey] = None) -> int:
        """Extend the TTL of one claim (by key) or of every claim the connection holds."""
        deadline = self._clock() + self.ttl_seconds
        touched = 0
        with self._lock:
            if key is not None:
                claim = self._claims.get(key)
                if claim is not None and claim.connection_id == connection_id:
                    claim.expires_at = deadline
                    touched = 1
                return touched
            for claim in self._claims.values():
                if claim.connection_id == connection_id:
                    claim.expires_at = deadline
                    touched += 1
        return touched

    def release_connection(self, connection_id: str, portfolio_id: Optional[str] = None) -> List[ActiveFieldClaim]:
        with self._lock:
            dropped = [
                c for c in self._claims.values()
                if c.connection_id == connection_id and (portfolio_id is None or c.portfolio_id == portfolio_id)
            ]
            for c in dropped:
                del self._claims[c.key]
        return dropped

    def active(self, portfolio_id: str) -> List[ActiveFieldClaim]:
        now = self._clock()
        with self._lock:
            return [
                c for c in self._claims.values()
                if c.portfolio_id == str(portfolio_id) and c.expires_at > now
            ]

    def sweep_expired(self) -> List[ActiveFieldClaim]:
        now = self._clock()
        with self._lock:
            expired = [c for c in self._claims.values() if c.expires_at <= now]
            for c in expired:
                del self._claims[c.key]
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)
