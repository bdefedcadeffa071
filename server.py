import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import anyio
from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from classes import settings
from classes.claim_ledger import ClaimLedger
from classes.db_hlpr import build_session_factory, get_db_engine
from classes.entities import Base
from classes.errors import InvalidInput, UnauthenticatedChannelIdentity
from classes.holiday_calendar import HolidayCalendar, load_default_calendar
from classes.models import (
    CalculateRequest,
    CalculationResult,
    RiskTableRow,
    SummaryRequest,
    SummaryResponse,
    TaskValidationIssue,
    ValidateTasksRequest,
)
from classes.portfolio_store import PortfolioStore
from classes.presence_registry import PortfolioRegistry
from classes.relay import BroadcastRelay
from classes.scheduler import compute_schedule, risk_table
from classes.session_auth import ChannelIdentity, SessionAuthenticator, token_from_auth_header
from classes.summary_renderer import render_summary
from classes.task_validation import validate_tasks

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("planner_server")

# Close code sent when the channel handshake carries no valid session
WS_UNAUTHENTICATED = 4401


def create_app(
    registry: Optional[PortfolioRegistry] = None,
    ledger: Optional[ClaimLedger] = None,
    calendar: Optional[HolidayCalendar] = None,
    session_factory: Optional[Callable] = None,
    require_auth: Optional[bool] = None,
    sweep_interval: Optional[float] = None,
) -> FastAPI:
    """
    Build the planner API. Every collaborator can be injected; whatever is not
    passed is created from settings when the app starts.
    """
    require_auth = settings.REQUIRE_CHANNEL_AUTH if require_auth is None else require_auth
    sweep_interval = settings.CLAIM_SWEEP_INTERVAL if sweep_interval is None else sweep_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = app.state
        state.registry = registry or PortfolioRegistry()
        state.ledger = ledger or ClaimLedger(ttl_seconds=settings.CLAIM_TTL_SECONDS)
        state.calendar = calendar or load_default_calendar()
        factory = session_factory
        if factory is None:
            factory = build_session_factory()
        state.authenticator = SessionAuthenticator(factory)
        state.portfolios = PortfolioStore(factory)
        state.relay = BroadcastRelay(state.registry, state.ledger, can_join=state.portfolios.can_access)

        sweeper = None
        if sweep_interval > 0:
            sweeper = asyncio.create_task(state.relay.run_sweeper(sweep_interval))
        logger.info("Planner server started (channel auth required=%s)", require_auth)
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                try:
                    await sweeper
                except asyncio.CancelledError:
                    pass
            state.registry.clear()
            logger.info("Planner server stopped")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current_identity(request: Request, authorization: Optional[str] = Header(default=None)) -> ChannelIdentity:
        token = token_from_auth_header(authorization)
        if not token:
            raise HTTPException(status_code=401, detail="Access token required")
        identity = request.app.state.authenticator.resolve(token)
        if identity is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return identity

    # -----------------------
    # Calculation routes
    # -----------------------

    @app.get("/api/risks/table", response_model=List[RiskTableRow], response_model_by_alias=True)
    async def get_risk_table():
        return risk_table()

    @app.get("/api/holidays/{year}")
    async def get_holidays(year: int, request: Request):
        days = request.app.state.calendar.holidays_for(year)
        if days is None:
            raise HTTPException(status_code=404, detail=f"No holiday data configured for {year}")
        return [d.isoformat() for d in days]

    @app.post("/api/calculate", response_model=CalculationResult, response_model_by_alias=True)
    def calculate(body: CalculateRequest, request: Request):
        try:
            return compute_schedule(body.tasks, body.start_date, request.app.state.calendar)
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/api/summary", response_model=SummaryResponse, response_model_by_alias=True)
    def summary(body: SummaryRequest, request: Request):
        try:
            result = compute_schedule(body.tasks, body.start_date, request.app.state.calendar)
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=str(e))
        text = render_summary(body.portfolio_name, body.tasks, result, body.start_date)
        return SummaryResponse(summary=text, calculations=result)

    @app.post("/api/tasks/validate", response_model=List[TaskValidationIssue], response_model_by_alias=True)
    async def validate(body: ValidateTasksRequest):
        return validate_tasks(body.tasks)

    @app.get("/api/portfolios/{portfolio_id}/schedule", response_model=SummaryResponse,
             response_model_by_alias=True)
    def portfolio_schedule(portfolio_id: str, request: Request,
                           identity: ChannelIdentity = Depends(current_identity)):
        portfolios: PortfolioStore = request.app.state.portfolios
        snapshot = portfolios.load(portfolio_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Portfolio not found")
        if not portfolios.can_access(identity.user_id, identity.role, portfolio_id):
            raise HTTPException(status_code=403, detail="Access denied")
        try:
            result = compute_schedule(snapshot.tasks, snapshot.start_date, request.app.state.calendar)
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=str(e))
        text = render_summary(snapshot.name, snapshot.tasks, result, snapshot.start_date)
        return SummaryResponse(summary=text, calculations=result)

    # -----------------------
    # Broadcast channel
    # -----------------------

    @app.websocket("/ws")
    async def channel(ws: WebSocket):
        state = ws.app.state
        token = ws.query_params.get("token") or token_from_auth_header(ws.headers.get("authorization"))
        try:
            identity = state.authenticator.identify(token, required=require_auth)
        except UnauthenticatedChannelIdentity as e:
            logger.info("Rejected channel connection: %s", e)
            await ws.close(code=WS_UNAUTHENTICATED)
            return

        await ws.accept()
        relay: BroadcastRelay = state.relay
        session = relay.open(ws, identity)
        try:
            while True:
                frame = await ws.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None and frame.get("bytes") is not None:
                    raw = frame["bytes"].decode("utf-8", errors="replace")
                await relay.handle_text(session, raw)
        except WebSocketDisconnect:
            pass
        finally:
            # the handler may be cancelled (client gone, shutdown); still announce the departure
            with anyio.CancelScope(shield=True):
                await relay.close(session)

    return app


def create_default_app() -> FastAPI:
    engine = get_db_engine()
    # local runs get the tables; production schemas are managed elsewhere
    Base.metadata.create_all(engine)
    return create_app(session_factory=build_session_factory(engine))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_default_app(), host=settings.HOST, port=settings.PORT)
