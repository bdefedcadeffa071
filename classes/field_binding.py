# classes/field_binding.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from classes.settings import FIELD_CHANGE_DEBOUNCE_MS

logger = logging.getLogger("planner_client")

FieldKey = Tuple[str, Optional[str]]


def field_key(field_id: str, task_id: Optional[str] = None) -> FieldKey:
    return (str(field_id), str(task_id) if task_id not in (None, "") else None)


class Debouncer:
    """
    Trailing-edge debounce: every trigger() cancels the pending call and
    re-arms it; the callback fires once the input has been quiet for `delay`.
    """

    def __init__(self, delay_seconds: float, callback: Callable[..., Any]):
        self.delay_seconds = delay_seconds
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any) -> None:
        self.cancel()
        self._args = args
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def _fire(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        self.callback(*args)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._args = ()


@dataclass
class RemoteClaim:
    user_id: Optional[str]
    username: Optional[str]
    seen_at: float


class PresenceBoard:
    """
    This client's view of who is editing what, built only from the events it
    receives. With `ttl_seconds` set, a claim not refreshed in time is treated
    as gone even if the matching blur never arrived.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._claims: Dict[FieldKey, RemoteClaim] = {}

    def apply(self, event: Dict[str, Any]) -> bool:
        """Fold one inbound event into the board. Returns True if it changed anything."""
        event_type = event.get("type")
        if event_type == "user_field_focus" and event.get("fieldId"):
            key = field_key(event["fieldId"], event.get("taskId"))
            self._claims[key] = RemoteClaim(event.get("userId"), event.get("username"), self._clock())
            return True
        if event_type == "user_field_blur" and event.get("fieldId"):
            key = field_key(event["fieldId"], event.get("taskId"))
            claim = self._claims.get(key)
            # a late blur from a previous editor must not clear the current one
            if claim is None or claim.user_id != event.get("userId"):
                return False
            del self._claims[key]
            return True
        if event_type == "field_changed" and event.get("fieldId"):
            claim = self._claims.get(field_key(event["fieldId"], event.get("taskId")))
            if claim is not None:
                claim.seen_at = self._clock()
            return False
        if event_type == "joined_portfolio":
            self._claims.clear()
            for item in event.get("activeFields") or []:
                if item.get("fieldId"):
                    key = field_key(item["fieldId"], item.get("taskId"))
                    self._claims[key] = RemoteClaim(item.get("userId"), item.get("username"), self._clock())
            return True
        return False

    def claimant(self, field_id: str, task_id: Optional[str] = None) -> Optional[RemoteClaim]:
        key = field_key(field_id, task_id)
        claim = self._claims.get(key)
        if claim is None:
            return None
        if self.ttl_seconds is not None and self._clock() - claim.seen_at > self.ttl_seconds:
            del self._claims[key]
            return None
        return claim

    def clear(self) -> None:
        self._claims.clear()

    def __len__(self) -> int:
        return len(self._claims)


class FieldBinding:
    """
    Ties one form field to the broadcast channel.

    - focus/blur announce the local user's claim on the field
    - local edits go out as a debounced field_change
    - a remote claim shows as a badge while the field is not focused locally
    - a remote field_changed overwrites the shown value, unless the field is
      focused here: local typing always wins
    """

    def __init__(
        self,
        client: Any,
        portfolio_id: str,
        field_id: str,
        task_id: Optional[str] = None,
        value: Any = "",
        debounce_ms: int = FIELD_CHANGE_DEBOUNCE_MS,
        on_remote_value: Optional[Callable[[Any], None]] = None,
    ):
        self.client = client
        self.portfolio_id = portfolio_id
        self.field_id = field_id
        self.task_id = task_id
        self.value = value
        self.focused = False
        self.on_remote_value = on_remote_value
        self._debouncer = Debouncer(debounce_ms / 1000.0, self._send_change)
        client.subscribe(self.handle_event)

    @property
    def key(self) -> FieldKey:
        return field_key(self.field_id, self.task_id)

    @property
    def editor(self) -> Optional[RemoteClaim]:
        if self.focused:
            return None
        return self.client.presence.claimant(self.field_id, self.task_id)

    @property
    def badge(self) -> Optional[str]:
        claim = self.editor
        if claim is None:
            return None
        return f"being edited by {claim.username or 'another user'}"

    def focus(self) -> None:
        self.focused = True
        self.client.notify_field_focus(self.portfolio_id, self.field_id, self.task_id)

    def blur(self) -> None:
        self._debouncer.flush()
        self.focused = False
        self.client.notify_field_blur(self.portfolio_id, self.field_id, self.task_id)

    def change(self, value: Any) -> None:
        self.value = value
        self._debouncer.trigger(value)

    def _send_change(self, value: Any) -> None:
        self.client.notify_field_change(self.portfolio_id, self.field_id, value, self.task_id)

    def handle_event(self, event: Dict[str, Any]) -> None:
        if event.get("type") != "field_changed" or event.get("portfolioId") != self.portfolio_id:
            return
        if field_key(event.get("fieldId") or "", event.get("taskId")) != self.key:
            return
        if self.focused:
            logger.debug("Ignored remote value for focused field %s", self.key)
            return
        self.value = event.get("value")
        if self.on_remote_value is not None:
            self.on_remote_value(self.value)

    def close(self) -> None:
        self._debouncer.cancel()
        self.client.unsubscribe(self.handle_event)
