import asyncio
import json

import pytest

from classes.channel_client import ChannelClient
from classes.errors import ChannelUnavailable


class FakeConnection:
    def __init__(self, url):
        self.url = url
        self.sent = []
        self.inbox = asyncio.Queue()
        self.closed = False

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True
        self.inbox.put_nowait(ConnectionError("closed"))

    def push(self, event):
        self.inbox.put_nowait(json.dumps(event))

    def drop(self):
        self.inbox.put_nowait(ConnectionError("connection reset"))


class FakeRelay:
    def __init__(self):
        self.connections = []

    async def connect(self, url):
        conn = FakeConnection(url)
        self.connections.append(conn)
        return conn


def _client(relay, **kwargs):
    kwargs.setdefault("reconnect_delay", 0.01)
    kwargs.setdefault("heartbeat_interval", None)
    return ChannelClient("ws://relay.local/ws", token="tok-1", connect=relay.connect, **kwargs)


async def _settle():
    await asyncio.sleep(0.02)


def test_connects_with_token_and_joins():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay)
        assert client.join_portfolio("p1") is False
        client.start()
        await client.wait_connected(1)
        await _settle()
        await client.stop()

    asyncio.run(scenario())

    conn = relay.connections[0]
    assert conn.url == "ws://relay.local/ws?token=tok-1"
    assert conn.sent == [{"type": "join_portfolio", "portfolioId": "p1"}]


def test_notifications_go_out_in_order():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay)
        client.start()
        await client.wait_connected(1)
        client.join_portfolio("p1", user_id="u1", username="Ann")
        client.notify_task_update("p1", "t1", {"days": 2})
        client.notify_field_focus("p1", "title", "t1")
        client.leave_portfolio()
        await _settle()
        await client.stop()

    asyncio.run(scenario())

    assert [m["type"] for m in relay.connections[0].sent] == [
        "join_portfolio", "task_update", "field_focus", "leave_portfolio",
    ]
    assert relay.connections[0].sent[0]["username"] == "Ann"


def test_inbound_events_update_presence_and_subscribers():
    relay = FakeRelay()
    invalidated = []
    everything = []

    async def scenario():
        client = _client(relay)

        async def record(event):
            everything.append(event["type"])

        client.on_invalidate(lambda e: invalidated.append(e["type"]))
        client.subscribe(record)
        client.start()
        await client.wait_connected(1)
        conn = relay.connections[0]
        conn.push({"type": "user_field_focus", "portfolioId": "p1", "fieldId": "title",
                   "taskId": "t1", "userId": "bob", "username": "Bob"})
        conn.push({"type": "task_changed", "portfolioId": "p1", "taskId": "t1", "data": {}})
        conn.inbox.put_nowait("garbage")
        await _settle()
        claimant = client.presence.claimant("title", "t1")
        await client.stop()
        return claimant

    claimant = asyncio.run(scenario())

    assert claimant.username == "Bob"
    assert invalidated == ["task_changed"]
    assert everything == ["user_field_focus", "task_changed"]


def test_failing_subscriber_does_not_stop_others():
    relay = FakeRelay()
    seen = []

    async def scenario():
        client = _client(relay)

        def broken(event):
            raise RuntimeError("boom")

        client.subscribe(broken)
        client.subscribe(lambda e: seen.append(e["type"]))
        await client.dispatch(json.dumps({"type": "task_added"}))

    asyncio.run(scenario())
    assert seen == ["task_added"]


def test_reconnects_and_rejoins():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay)
        client.start()
        await client.wait_connected(1)
        client.join_portfolio("p1")
        relay.connections[0].push({"type": "user_field_focus", "fieldId": "name", "username": "Bob"})
        await _settle()
        relay.connections[0].drop()
        await asyncio.sleep(0.08)
        presence_after_drop = len(client.presence)
        connected = client.is_connected
        await client.stop()
        return presence_after_drop, connected

    presence_after_drop, connected = asyncio.run(scenario())

    assert len(relay.connections) >= 2
    assert relay.connections[1].sent[0] == {"type": "join_portfolio", "portfolioId": "p1"}
    assert presence_after_drop == 0
    assert connected


def test_send_while_disconnected_is_dropped():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay)
        return client.notify_task_deleted("p1", "t1"), client.leave_portfolio()

    assert asyncio.run(scenario()) == (False, False)


def test_wait_connected_times_out():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay)
        with pytest.raises(ChannelUnavailable):
            await client.wait_connected(0.01)

    asyncio.run(scenario())


def test_heartbeat_sent_while_joined():
    relay = FakeRelay()

    async def scenario():
        client = _client(relay, heartbeat_interval=0.01)
        client.join_portfolio("p1")
        client.start()
        await client.wait_connected(1)
        await asyncio.sleep(0.05)
        await client.stop()

    asyncio.run(scenario())

    types = [m["type"] for m in relay.connections[0].sent]
    assert types[0] == "join_portfolio"
    assert "heartbeat" in types
