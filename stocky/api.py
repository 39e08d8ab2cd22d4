from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .config import Settings
from .corporate_actions import CorporateActionService
from .db import build_engine, build_session_factory, init_db
from .errors import DuplicateRequestError, PersistenceError, StockyError, ValidationError
from .log import get_logger, setup_logging
from .models import (
    CorporateActionRequest, CorporateActionResult, HistoricalValue, PortfolioResponse,
    RewardRequest, RewardResult, StatsResponse, TodayStock,
)
from .price_fetcher import PriceFetcher
from .reporting import ReportingService
from .service import RewardLedgerService

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_reporting(request: Request, db: Session = Depends(get_db)) -> ReportingService:
    return ReportingService(db, request.app.state.settings.REPORTING_TIMEZONE)


@router.post("/reward", response_model=RewardResult, tags=["Rewards"],
             responses={200: {"description": "Reward recorded, or already processed"}})
def create_reward(request: Request, body: RewardRequest):
    service: RewardLedgerService = request.app.state.reward_service
    try:
        return service.record_reward(
            body.user_id, body.stock_symbol, body.quantity,
            idempotency_key=body.idempotency_key, notes=body.notes,
        )
    except DuplicateRequestError:
        return JSONResponse(status_code=status.HTTP_200_OK,
                            content={"status": "duplicate", "message": "reward already processed"})


@router.post("/corporate-action", response_model=CorporateActionResult, tags=["Corporate Actions"])
def apply_corporate_action(request: Request, body: CorporateActionRequest) -> CorporateActionResult:
    service: CorporateActionService = request.app.state.corporate_action_service
    return service.apply(body.action, body.symbol, body.ratio, body.new_symbol, body.effective_date)


@router.get("/today-stocks/{user_id}", response_model=list[TodayStock], tags=["Reports"])
def get_today_stocks(user_id: UUID, reporting: ReportingService = Depends(get_reporting)) -> list[TodayStock]:
    return reporting.today_rewards(user_id)


@router.get("/historical-inr/{user_id}", response_model=list[HistoricalValue], tags=["Reports"])
def get_historical_inr(
    request: Request,
    user_id: UUID,
    days: Optional[int] = Query(default=None, ge=1, le=3650),
    reporting: ReportingService = Depends(get_reporting),
) -> list[HistoricalValue]:
    return reporting.historical_inr(user_id, days or request.app.state.settings.HISTORY_DAYS)


@router.get("/stats/{user_id}", response_model=StatsResponse, tags=["Reports"])
def get_stats(user_id: UUID, reporting: ReportingService = Depends(get_reporting)) -> StatsResponse:
    return reporting.stats(user_id)


@router.get("/portfolio/{user_id}", response_model=PortfolioResponse, tags=["Reports"])
def get_portfolio(user_id: UUID, reporting: ReportingService = Depends(get_reporting)) -> PortfolioResponse:
    return reporting.portfolio(user_id)


def describe_request_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error.get("loc", ())[1:])
        parts.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return "; ".join(parts) or "invalid request"


def _register_error_handlers(app: FastAPI) -> None:
    # Malformed bodies and path params share the 400 shape of service-side validation
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": describe_request_errors(exc)})

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error("Persistence failure on %s: %s", request.url.path, exc.original_error or exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "internal"})

    @app.exception_handler(StockyError)
    async def stocky_error_handler(request: Request, exc: StockyError):
        logger.error("Unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "internal"})


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings)

    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        fetcher = None
        if settings.PRICE_FETCH_ENABLED:
            fetcher = PriceFetcher(session_factory, settings.PRICE_FETCH_INTERVAL_MINUTES)
            fetcher.start()
        logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
        yield
        if fetcher:
            fetcher.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Stock rewards with a double-entry ledger and retroactive corporate actions",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.reward_service = RewardLedgerService(
        session_factory, get_logger("stocky.rewards"), settings.REPORTING_TIMEZONE,
    )
    app.state.corporate_action_service = CorporateActionService(
        session_factory, get_logger("stocky.corporate_actions"), settings.REPORTING_TIMEZONE,
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "stocky-rewards"}

    app.include_router(router)
    _register_error_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
