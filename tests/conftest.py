import json
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from classes.entities import Base, Portfolio, PortfolioCollaborator, Task as TaskRow, User, UserSession
from classes.holiday_calendar import HolidayCalendar, load_default_calendar
from classes.models import Task


class FakeTransport:
    """Stands in for a websocket: records what the relay sends."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(text))

    def types(self):
        return [e["type"] for e in self.sent]

    def last(self, event_type):
        matches = [e for e in self.sent if e["type"] == event_type]
        return matches[-1] if matches else None


@pytest.fixture()
def calendar() -> HolidayCalendar:
    return load_default_calendar()


@pytest.fixture()
def weekend_only_calendar() -> HolidayCalendar:
    return HolidayCalendar({2025: []})


@pytest.fixture()
def make_task():
    def _make(title="Task", team="backend", days=1, group=None, description="", order=0):
        return Task(
            title=title,
            description=description,
            team=team,
            days=days,
            parallel_group=group,
            order_index=order,
        )
    return _make


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture()
def seed_user(session_factory):
    """Create a user with a bearer token; returns (user_id, token)."""

    def _seed(username, token=None, role="user", active=True, expires_in_days=1):
        session = session_factory()
        try:
            user = User(
                username=username,
                email=f"{username}@example.com",
                full_name=username.title(),
                role=role,
                is_active=active,
            )
            session.add(user)
            session.flush()
            session.add(UserSession(
                token=token or f"token-{username}",
                user_id=user.id,
                expires_at=datetime.utcnow() + timedelta(days=expires_in_days),
            ))
            session.commit()
            return user.id, token or f"token-{username}"
        finally:
            session.close()

    return _seed


@pytest.fixture()
def seed_portfolio(session_factory):
    def _seed(owner_id, name="Checkout revamp", start=date(2025, 10, 17), tasks=()):
        session = session_factory()
        try:
            portfolio = Portfolio(name=name, user_id=owner_id, start_date=start)
            session.add(portfolio)
            session.flush()
            for index, (title, team, days, group) in enumerate(tasks):
                session.add(TaskRow(
                    portfolio_id=portfolio.id,
                    title=title,
                    description=f"{title} work",
                    team=team,
                    days=days,
                    parallel_group=group,
                    order_index=index,
                ))
            session.commit()
            return portfolio.id
        finally:
            session.close()

    return _seed


@pytest.fixture()
def seed_collaborator(session_factory):
    def _seed(portfolio_id, user_id, role="editor", status="accepted"):
        session = session_factory()
        try:
            session.add(PortfolioCollaborator(
                portfolio_id=portfolio_id, user_id=user_id, role=role, status=status,
            ))
            session.commit()
        finally:
            session.close()

    return _seed


@pytest.fixture()
def make_transport():
    return FakeTransport
