# classes/relay.py
"""
Portfolio broadcast relay.

Every connection that joins a portfolio becomes a member of that portfolio's
group. Mutation notifications and field presence events from one member are
fanned out to every *other* member of the same group; the sender never gets
its own echo (filtered by connection, not by user, so two tabs of the same
user still see each other).

The relay keeps no copy of portfolio data. It only tracks:
  - group membership (PortfolioRegistry)
  - field claims with a TTL (ClaimLedger), so an abrupt disconnect or a lost
    blur does not leave a "being edited" badge on screen forever

Inbound -> outbound mapping
---------------------------
  join_portfolio   -> joined_portfolio (sender), user_joined (others);
                      error "forbidden" when the user may not open the portfolio
  leave_portfolio  -> left_portfolio (sender), user_left (others)
  portfolio_update -> portfolio_changed
  task_update      -> task_changed
  task_added       -> task_added
  task_deleted     -> task_deleted
  field_focus      -> user_field_focus
  field_blur       -> user_field_blur, only while the sender holds the claim
  field_change     -> field_changed
  heartbeat        -> heartbeat_ack (sender)
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from classes.claim_ledger import ActiveFieldClaim, ClaimLedger
from classes.models import ChannelMessage
from classes.presence_registry import PortfolioRegistry, PresenceSession
from classes.session_auth import ChannelIdentity

logger = logging.getLogger("planner_relay")

MUTATION_EVENTS = {
    "portfolio_update": "portfolio_changed",
    "task_update": "task_changed",
    "task_added": "task_added",
    "task_deleted": "task_deleted",
}


class BroadcastRelay:
    def __init__(self, registry: PortfolioRegistry, ledger: ClaimLedger,
                 can_join: Optional[Callable[[str, str, str], bool]] = None):
        """
        `can_join(user_id, role, portfolio_id)` gates join_portfolio for
        authenticated connections. It may block (database lookup), so it runs
        in a worker thread.
        """
        self.registry = registry
        self.ledger = ledger
        self.can_join = can_join

    # -----------------------
    # Connection lifecycle
    # -----------------------

    def open(self, transport: Any, identity: Optional[ChannelIdentity] = None) -> PresenceSession:
        if identity is not None:
            session = PresenceSession(transport, identity.user_id, identity.username,
                                      authenticated=True, role=identity.role)
        else:
            session = PresenceSession(transport)
        logger.debug("Connection %s opened (user=%s)", session.connection_id, session.user_id)
        return session

    async def close(self, session: PresenceSession) -> None:
        """Release claims and memberships and tell the groups. Safe to call twice."""
        session.closed = True
        claims = self.ledger.release_connection(session.connection_id)
        left = self.registry.disconnect(session)
        if not claims and not left:
            logger.debug("Connection %s closed (user=%s)", session.connection_id, session.user_id)
            return
        for claim in claims:
            await self._announce_release(claim, reason="disconnected")
        for pid in left:
            await self.broadcast(pid, self._presence_event("user_left", pid, session))
        logger.info("Connection %s closed (user=%s, left=%s)", session.connection_id, session.user_id, left)

    # -----------------------
    # Inbound frames
    # -----------------------

    async def handle_text(self, session: PresenceSession, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Malformed frame from %s: not JSON", session.connection_id)
            await self._reply_error(session, "invalid_json", "Message is not valid JSON")
            return
        if not isinstance(payload, dict):
            await self._reply_error(session, "invalid_message", "Message must be a JSON object")
            return
        try:
            message = ChannelMessage.model_validate(payload)
        except ValidationError as e:
            logger.warning("Malformed frame from %s: %s", session.connection_id, e.errors()[:1])
            await self._reply_error(session, "invalid_message", "Message must carry a string 'type'")
            return
        await self.handle_message(session, message)

    async def handle_message(self, session: PresenceSession, message: ChannelMessage) -> None:
        msg_type = message.type

        if msg_type == "join_portfolio":
            await self._join(session, message)
        elif msg_type == "leave_portfolio":
            await self._leave(session, message)
        elif msg_type in MUTATION_EVENTS:
            await self._relay_mutation(session, message)
        elif msg_type == "field_focus":
            await self._field_focus(session, message)
        elif msg_type == "field_blur":
            await self._field_blur(session, message)
        elif msg_type == "field_change":
            await self._field_change(session, message)
        elif msg_type == "heartbeat":
            refreshed = self.ledger.refresh(session.connection_id)
            await session.send({"type": "heartbeat_ack", "refreshedClaims": refreshed})
        else:
            logger.warning("Unknown message type %r from %s", msg_type, session.connection_id)
            await self._reply_error(session, "unknown_type", f"Unknown message type: {msg_type}")

    # -----------------------
    # Fan-out
    # -----------------------

    async def broadcast(self, portfolio_id: str, event: Dict[str, Any], exclude: str | None = None) -> int:
        """
        Send `event` to every member of the group except connection `exclude`.
        Dead members are skipped, then closed like any disconnect (their claims
        released and their departure announced). Returns how many were reached.
        """
        members = self.registry.members(portfolio_id, exclude=exclude)
        if not members:
            return 0
        results = await asyncio.gather(*(m.send(event) for m in members))
        delivered = 0
        dead = []
        for member, ok in zip(members, results):
            if ok:
                delivered += 1
            else:
                dead.append(member)
        for member in dead:
            logger.debug("Dropping unreachable connection %s from %s", member.connection_id, portfolio_id)
            await self.close(member)
        return delivered

    async def sweep_claims(self) -> List[ActiveFieldClaim]:
        expired = self.ledger.sweep_expired()
        for claim in expired:
            logger.info(
                "Field claim expired: portfolio=%s field=%s task=%s user=%s",
                claim.portfolio_id, claim.field_id, claim.task_id, claim.user_id,
            )
            await self._announce_release(claim, reason="expired")
        return expired

    async def run_sweeper(self, interval: float) -> None:
        logger.info("Claim sweeper running (interval=%.1fs, ttl=%.1fs)", interval, self.ledger.ttl_seconds)
        while True:
            try:
                await self.sweep_claims()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Claim sweep failed")
            await asyncio.sleep(interval)

    # -----------------------
    # Handlers
    # -----------------------

    async def _join(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = message.portfolioId
        if not pid:
            await self._reply_error(session, "missing_portfolio", "join_portfolio requires portfolioId")
            return

        if not session.authenticated:
            # legacy mode: identity is whatever the client says
            session.user_id = message.userId
            session.username = message.username

        rejoin = session.portfolio_id == pid
        if not rejoin and not await self._may_join(session, pid):
            logger.info("User %s denied access to portfolio %s", session.user_id, pid)
            await self._reply_error(session, "forbidden", "No access to that portfolio")
            return
        if session.closed:
            return

        previous = self.registry.join(session, pid)
        if previous is not None:
            await self._release_in(session, previous, reason="left")
            await self.broadcast(previous, self._presence_event("user_left", previous, session))
            logger.info("Connection %s moved from %s to %s", session.connection_id, previous, pid)

        await session.send({
            "type": "joined_portfolio",
            "portfolioId": pid,
            "userId": session.user_id,
            "username": session.username,
            "members": self.registry.roster(pid),
            "activeFields": [
                c.to_event_fields() for c in self.ledger.active(pid)
                if c.connection_id != session.connection_id
            ],
        })
        if not rejoin:
            await self.broadcast(pid, self._presence_event("user_joined", pid, session), exclude=session.connection_id)
            logger.info("User %s joined portfolio %s", session.user_id, pid)

    async def _leave(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = session.portfolio_id
        if pid is None or (message.portfolioId and message.portfolioId != pid):
            await self._reply_error(session, "not_joined", "Connection has not joined that portfolio")
            return
        await self._release_in(session, pid, reason="left")
        self.registry.leave(session)
        await self.broadcast(pid, self._presence_event("user_left", pid, session))
        await session.send({"type": "left_portfolio", "portfolioId": pid})
        logger.info("User %s left portfolio %s", session.user_id, pid)

    async def _relay_mutation(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = await self._require_group(session, message)
        if pid is None:
            return
        event = {
            "type": MUTATION_EVENTS[message.type],
            "portfolioId": pid,
            "data": message.data,
            "userId": session.user_id,
            "username": session.username,
        }
        if message.type != "portfolio_update":
            event["taskId"] = message.taskId
        await self.broadcast(pid, event, exclude=session.connection_id)

    async def _field_focus(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = await self._require_field(session, message)
        if pid is None:
            return
        self.ledger.claim(pid, message.fieldId, message.taskId, session.connection_id,
                          session.user_id, session.username)
        await self.broadcast(pid, self._field_event("user_field_focus", pid, message, session),
                             exclude=session.connection_id)

    async def _field_blur(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = await self._require_field(session, message)
        if pid is None:
            return
        if self.ledger.release(pid, message.fieldId, message.taskId, session.connection_id) is None:
            # someone else took the field over; their claim stands
            return
        event = self._field_event("user_field_blur", pid, message, session)
        event["reason"] = "blur"
        await self.broadcast(pid, event, exclude=session.connection_id)

    async def _field_change(self, session: PresenceSession, message: ChannelMessage) -> None:
        pid = await self._require_field(session, message)
        if pid is None:
            return
        self.ledger.refresh(session.connection_id, (pid, message.fieldId, message.taskId))
        event = self._field_event("field_changed", pid, message, session)
        event["value"] = message.value
        await self.broadcast(pid, event, exclude=session.connection_id)

    # -----------------------
    # Helpers
    # -----------------------

    async def _may_join(self, session: PresenceSession, portfolio_id: str) -> bool:
        if self.can_join is None or not session.authenticated:
            return True
        return await asyncio.to_thread(self.can_join, session.user_id, session.role, portfolio_id)

    async def _require_group(self, session: PresenceSession, message: ChannelMessage) -> Optional[str]:
        pid = message.portfolioId or session.portfolio_id
        if pid is None or pid != session.portfolio_id:
            await self._reply_error(session, "not_joined", "Join the portfolio before sending to it")
            return None
        return pid

    async def _require_field(self, session: PresenceSession, message: ChannelMessage) -> Optional[str]:
        pid = await self._require_group(session, message)
        if pid is None:
            return None
        if not message.fieldId:
            await self._reply_error(session, "missing_field", f"{message.type} requires fieldId")
            return None
        return pid

    async def _release_in(self, session: PresenceSession, portfolio_id: str, reason: str) -> None:
        for claim in self.ledger.release_connection(session.connection_id, portfolio_id):
            await self._announce_release(claim, reason=reason)

    async def _announce_release(self, claim: ActiveFieldClaim, reason: str) -> None:
        event = {"type": "user_field_blur", **claim.to_event_fields(), "reason": reason}
        await self.broadcast(claim.portfolio_id, event, exclude=claim.connection_id)

    def _field_event(self, event_type: str, pid: str, message: ChannelMessage,
                     session: PresenceSession) -> Dict[str, Any]:
        return {
            "type": event_type,
            "portfolioId": pid,
            "fieldId": message.fieldId,
            "taskId": message.taskId,
            "userId": session.user_id,
            "username": session.username,
        }

    def _presence_event(self, event_type: str, pid: str, session: PresenceSession) -> Dict[str, Any]:
        return {"type": event_type, "portfolioId": pid, **session.describe()}

    async def _reply_error(self, session: PresenceSession, code: str, message: str) -> None:
        await session.send({"type": "error", "code": code, "message": message})
