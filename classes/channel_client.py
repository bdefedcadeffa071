# classes/channel_client.py
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from classes.errors import ChannelUnavailable
from classes.field_binding import PresenceBoard
from classes.settings import CLAIM_TTL_SECONDS, RECONNECT_DELAY_SECONDS

logger = logging.getLogger("planner_client")

Subscriber = Callable[[Dict[str, Any]], Any]


def _with_token(url: str, token: Optional[str]) -> str:
    if not token:
        return url
    parts = urlsplit(url)
    query = f"{parts.query}&" if parts.query else ""
    return urlunsplit(parts._replace(query=query + urlencode({"token": token})))


class ChannelClient:
    """
    Keeps one connection to the relay alive.

    - Reconnects after a fixed delay and re-joins the last portfolio.
    - Sends while disconnected are dropped (no replay); the CRUD read path is
      the fallback for anything missed.
    - Inbound events update `presence` first, then go to subscribers.

    `connect` must return an awaitable connection exposing async send/recv/close,
    which is what websockets.connect provides.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        heartbeat_interval: Optional[float] = CLAIM_TTL_SECONDS / 3,
        presence_ttl: Optional[float] = None,
    ):
        self.url = _with_token(url, token)
        self._connect = connect or websockets.connect
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.presence = PresenceBoard(ttl_seconds=presence_ttl)
        self.portfolio_id: Optional[str] = None
        self._join_identity: Dict[str, Any] = {}
        self._subscribers: List[Tuple[Subscriber, Optional[frozenset]]] = []
        self._outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._conn: Any = None
        self._connected = asyncio.Event()
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -----------------------
    # Subscriptions
    # -----------------------

    def subscribe(self, callback: Subscriber, types: Optional[Iterable[str]] = None) -> None:
        self._subscribers.append((callback, frozenset(types) if types else None))

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers = [(cb, t) for cb, t in self._subscribers if cb != callback]

    def on_invalidate(self, callback: Subscriber) -> None:
        """Called whenever another member reports a saved change; refetch from the CRUD API."""
        self.subscribe(callback, ("portfolio_changed", "task_changed", "task_added", "task_deleted"))

    async def dispatch(self, raw: str) -> None:
        try:
            event = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-JSON frame from relay")
            return
        if not isinstance(event, dict):
            return

        self.presence.apply(event)
        if event.get("type") == "error":
            logger.warning("Relay error %s: %s", event.get("code"), event.get("message"))

        for callback, types in list(self._subscribers):
            if types is not None and event.get("type") not in types:
                continue
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Channel subscriber failed on %s", event.get("type"))

    # -----------------------
    # Outbound
    # -----------------------

    def send(self, message: Dict[str, Any]) -> bool:
        if not self.is_connected:
            logger.debug("Channel unavailable, dropped %s", message.get("type"))
            return False
        self._outbox.put_nowait(message)
        return True

    def join_portfolio(self, portfolio_id: str, user_id: Optional[str] = None,
                       username: Optional[str] = None) -> bool:
        self.portfolio_id = str(portfolio_id)
        self._join_identity = {k: v for k, v in (("userId", user_id), ("username", username)) if v}
        return self.send({"type": "join_portfolio", "portfolioId": self.portfolio_id, **self._join_identity})

    def leave_portfolio(self) -> bool:
        if self.portfolio_id is None:
            return False
        pid, self.portfolio_id = self.portfolio_id, None
        self.presence.clear()
        return self.send({"type": "leave_portfolio", "portfolioId": pid})

    def notify_portfolio_update(self, portfolio_id: str, data: Any) -> bool:
        return self.send({"type": "portfolio_update", "portfolioId": portfolio_id, "data": data})

    def notify_task_update(self, portfolio_id: str, task_id: str, data: Any) -> bool:
        return self.send({"type": "task_update", "portfolioId": portfolio_id, "taskId": task_id, "data": data})

    def notify_task_added(self, portfolio_id: str, task_id: str, data: Any = None) -> bool:
        return self.send({"type": "task_added", "portfolioId": portfolio_id, "taskId": task_id, "data": data})

    def notify_task_deleted(self, portfolio_id: str, task_id: str) -> bool:
        return self.send({"type": "task_deleted", "portfolioId": portfolio_id, "taskId": task_id})

    def notify_field_focus(self, portfolio_id: str, field_id: str, task_id: Optional[str] = None) -> bool:
        return self.send({"type": "field_focus", "portfolioId": portfolio_id, "fieldId": field_id, "taskId": task_id})

    def notify_field_blur(self, portfolio_id: str, field_id: str, task_id: Optional[str] = None) -> bool:
        return self.send({"type": "field_blur", "portfolioId": portfolio_id, "fieldId": field_id, "taskId": task_id})

    def notify_field_change(self, portfolio_id: str, field_id: str, value: Any,
                            task_id: Optional[str] = None) -> bool:
        return self.send({
            "type": "field_change",
            "portfolioId": portfolio_id,
            "fieldId": field_id,
            "taskId": task_id,
            "value": value,
        })

    # -----------------------
    # Connection loop
    # -----------------------

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stopping = True
        if self._conn is not None:
            try:
                await self._conn.close()
            except Exception as e:
                logger.debug("Error closing channel connection: %s", e)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            raise ChannelUnavailable(f"no relay connection after {timeout}s")

    async def run(self) -> None:
        while not self._stopping:
            try:
                await self._run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Channel unavailable: %s", e)
            finally:
                self._connected.clear()
                self._conn = None
                self.presence.clear()
            if self._stopping:
                break
            logger.info("Reconnecting to relay in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def _run_once(self) -> None:
        self._conn = await self._connect(self.url)
        self._outbox = asyncio.Queue()
        self._connected.set()
        logger.info("Channel connected")
        if self.portfolio_id is not None:
            self.send({"type": "join_portfolio", "portfolioId": self.portfolio_id, **self._join_identity})

        tasks = [asyncio.create_task(self._reader()), asyncio.create_task(self._writer())]
        if self.heartbeat_interval:
            tasks.append(asyncio.create_task(self._heartbeat()))
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Channel disconnected")

    async def _reader(self) -> None:
        while True:
            raw = await self._conn.recv()
            await self.dispatch(raw)

    async def _writer(self) -> None:
        while True:
            message = await self._outbox.get()
            await self._conn.send(json.dumps(message))

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self.portfolio_id is not None:
                self.send({"type": "heartbeat"})
