# classes/portfolio_store.py
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, selectinload

from classes.entities import Portfolio, PortfolioCollaborator
from classes.models import Task


@dataclass
class PortfolioSnapshot:
    id: str
    name: str
    owner_id: str
    start_date: date
    tasks: List[Task]


class PortfolioStore:
    """Read side of the portfolio tables, as consumed by the schedule endpoint."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    def load(self, portfolio_id: str) -> Optional[PortfolioSnapshot]:
        session = self.SessionFactory()
        try:
            portfolio = (
                session.query(Portfolio)
                .options(selectinload(Portfolio.tasks))
                .filter(Portfolio.id == str(portfolio_id))
                .one_or_none()
            )
            if portfolio is None:
                return None

            # materialize before closing session
            tasks = [
                Task(
                    title=row.title,
                    description=row.description or "",
                    team=row.team,
                    days=row.days,
                    parallel_group=row.parallel_group,
                    order_index=row.order_index,
                )
                for row in portfolio.tasks
            ]
            return PortfolioSnapshot(
                id=str(portfolio.id),
                name=portfolio.name,
                owner_id=str(portfolio.user_id),
                start_date=portfolio.start_date,
                tasks=tasks,
            )
        finally:
            session.close()

    def access_role(self, user_id: str, portfolio_id: str) -> Optional[str]:
        """
        "owner" for the portfolio's owner, the collaborator role for an accepted
        collaborator, None for everyone else (and for unknown portfolios).
        """
        session = self.SessionFactory()
        try:
            owner_id = (
                session.query(Portfolio.user_id)
                .filter(Portfolio.id == str(portfolio_id))
                .scalar()
            )
            if owner_id is None:
                return None
            if str(owner_id) == str(user_id):
                return "owner"
            role = (
                session.query(PortfolioCollaborator.role)
                .filter(
                    PortfolioCollaborator.portfolio_id == str(portfolio_id),
                    PortfolioCollaborator.user_id == str(user_id),
                    PortfolioCollaborator.status == "accepted",
                )
                .scalar()
            )
            return role
        finally:
            session.close()

    def can_access(self, user_id: str, role: str, portfolio_id: str) -> bool:
        return role == "admin" or self.access_role(user_id, portfolio_id) is not None
