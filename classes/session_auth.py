# classes/session_auth.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from classes.entities import User, UserSession
from classes.errors import UnauthenticatedChannelIdentity

logger = logging.getLogger("planner_server")


@dataclass(frozen=True)
class ChannelIdentity:
    user_id: str
    username: str
    role: str = "user"


def token_from_auth_header(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


class SessionAuthenticator:
    """
    Resolves a bearer token to the user behind it.

    Expired sessions, unknown tokens and inactive users all resolve to None.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    def resolve(self, token: str | None) -> Optional[ChannelIdentity]:
        if not token:
            return None

        session = self.SessionFactory()
        try:
            row = (
                session.query(UserSession, User)
                .join(User, User.id == UserSession.user_id)
                .filter(UserSession.token == token)
                .one_or_none()
            )
            if row is None:
                return None
            user_session, user = row
            if user_session.expires_at and user_session.expires_at < datetime.utcnow():
                logger.debug("Rejected expired session for user %s", user.id)
                return None
            if not user.is_active:
                return None
            return ChannelIdentity(user_id=str(user.id), username=user.username, role=user.role)
        finally:
            session.close()

    def identify(self, token: str | None, required: bool = True) -> Optional[ChannelIdentity]:
        """Channel handshake: resolve `token`, or raise when an identity is required and missing."""
        identity = self.resolve(token)
        if identity is None and required:
            reason = "no token" if not token else "unknown or expired token"
            raise UnauthenticatedChannelIdentity(reason)
        return identity
