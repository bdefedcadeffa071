# classes/entities.py
from datetime import date, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from typing import TypeAlias
UUID: TypeAlias = str
Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserSession(Base, TimestampMixin):
    """Bearer token issued by the login flow; the channel handshake checks it."""

    __tablename__ = "user_sessions"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)

    user = relationship("User")


class Portfolio(Base, TimestampMixin):
    __tablename__ = "portfolios"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    tasks = relationship(
        "Task",
        order_by="Task.order_index",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_portfolios_user_id", "user_id"),
    )


class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("portfolios.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    team: Mapped[str] = mapped_column(String(50), nullable=False)
    days: Mapped[int] = mapped_column(Integer, nullable=False)
    # tasks sharing a non-empty group run in parallel
    parallel_group: Mapped[str | None] = mapped_column(String(50))
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PortfolioCollaborator(Base, TimestampMixin):
    """Invitation of a user onto someone else's portfolio; only `accepted` grants access."""

    __tablename__ = "portfolio_collaborators"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("portfolios.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="editor")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    __table_args__ = (
        Index("ix_portfolio_collaborators_portfolio_user", "portfolio_id", "user_id", unique=True),
    )
