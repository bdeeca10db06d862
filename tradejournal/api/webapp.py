from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, field_validator

from tradejournal.api.service import JournalService, JournalServiceManager
from tradejournal.journal.models import (
    GoalCategory, GoalStatus, ImportSource, Period, TagType, TradeDirection,
    parse_timestamp,
)
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import AuthenticationError, JournalError
from tradejournal.utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

PUBLIC_PATHS = {"/api/health", "/auth/register", "/auth/login"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    mgr = JournalServiceManager.get_instance()
    if get_settings().ticker_enabled:
        await mgr.ticker.start()
    logger.info("webapp_started")
    yield
    await mgr.shutdown()
    logger.info("webapp_stopped")


app = FastAPI(title="Trade Journal", version="1.0", lifespan=lifespan)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AUTH HELPERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def get_session_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get(get_settings().session_cookie, "")


def get_user_service(request: Request) -> JournalService:
    mgr = JournalServiceManager.get_instance()
    user = mgr.auth.get_session_user(get_session_token(request))
    if not user:
        raise AuthenticationError()
    return mgr.get_service(user)


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    path = request.url.path
    if request.method == "OPTIONS" or path in PUBLIC_PATHS:
        return await call_next(request)
    mgr = JournalServiceManager.get_instance()
    if not mgr.auth.validate_session(get_session_token(request)):
        return JSONResponse({"error": "Not authenticated", "category": "authentication"}, status_code=401)
    return await call_next(request)


# Added last so it wraps the auth middleware and decorates its 401s
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(JournalError)
async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
    status = exc.status_code or 500
    if status >= 500:
        logger.error("request_failed", path=request.url.path, category=exc.category.value, error=exc.message)
    else:
        logger.warning("request_rejected", path=request.url.path, category=exc.category.value, error=exc.message)
    return JSONResponse(exc.to_dict(), status_code=status)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REQUEST MODELS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    timezone: Optional[str] = None
    base_currency: Optional[str] = None


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1)
    broker_name: Optional[str] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)


class TradeFields(BaseModel):
    account_id: Optional[str] = None
    strategy_id: Optional[str] = None
    exit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = Field(default=None, ge=0)
    risk_amount: Optional[float] = Field(default=None, ge=0)
    reward_amount: Optional[float] = None
    profit_loss_currency: Optional[float] = None
    opened_at: Optional[str] = None
    closed_at: Optional[str] = None
    session: Optional[str] = None
    market_condition: Optional[str] = None
    setup_type: Optional[str] = None
    confluence: Optional[str] = None
    execution_rating: Optional[int] = Field(default=None, ge=1, le=5)
    follow_plan: Optional[bool] = None
    notes: Optional[str] = None
    custom_fields: Optional[dict[str, Any]] = None

    @field_validator("opened_at", "closed_at")
    @classmethod
    def timestamp_is_iso(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_timestamp(v) is None:
            raise ValueError("must be an ISO-8601 timestamp")
        return v


class TradeCreate(TradeFields):
    instrument: str = Field(..., min_length=1)
    direction: TradeDirection = TradeDirection.LONG
    entry_price: float = Field(..., gt=0)


class TradeUpdate(TradeFields):
    instrument: Optional[str] = Field(default=None, min_length=1)
    direction: Optional[TradeDirection] = None
    entry_price: Optional[float] = Field(default=None, gt=0)


class ImportRequest(BaseModel):
    content: str
    source: ImportSource = ImportSource.GENERIC


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1)
    type: TagType = TagType.OTHER


class StrategyBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    checklist: Optional[dict[str, list[str]]] = None
    markets: Optional[list[str]] = None
    timeframes: Optional[list[str]] = None


class GoalBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[GoalCategory] = None
    status: Optional[GoalStatus] = None
    target_metric: Optional[str] = None
    due_date: Optional[str] = None
    image_url: Optional[str] = None


class HabitCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    date: str = ""
    schedule: dict[str, Any] = Field(default_factory=dict)
    image_url: Optional[str] = None


class HabitLogRequest(BaseModel):
    date: str = Field(..., min_length=10, max_length=10)
    completed: bool = True


class ReviewBody(BaseModel):
    week_start_date: Optional[str] = None
    week_end_date: Optional[str] = None
    went_well: Optional[str] = None
    didnt_go_well: Optional[str] = None
    lessons: Optional[str] = None
    focus_next_week: Optional[str] = None

    @field_validator("week_start_date", "week_end_date")
    @classmethod
    def date_is_iso(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_timestamp(v) is None:
            raise ValueError("must be an ISO-8601 date")
        return v


class PredictRequest(BaseModel):
    tradeData: dict[str, Any] = Field(default_factory=dict)


class AnalyzeRequest(BaseModel):
    period: Period = Period.MONTH


def _payload(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(exclude_unset=True, mode="json")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PUBLIC
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/health")
async def health() -> dict[str, Any]:
    mgr = JournalServiceManager.get_instance()
    return {"status": "ok", "ai_configured": mgr.gateway.configured, "ticker_running": mgr.ticker.running}


@app.post("/auth/register")
async def register(body: RegisterRequest) -> dict[str, Any]:
    logger.info("register_requested", **sanitize_log_data(body.model_dump()))
    user = JournalServiceManager.get_instance().auth.register(body.email, body.password, body.name)
    return {"success": True, "user": user.public_dict()}


@app.post("/auth/login")
async def login(body: LoginRequest) -> Any:
    settings = get_settings()
    token = JournalServiceManager.get_instance().auth.login(body.email, body.password)
    response = JSONResponse({"success": True, "token": token})
    response.set_cookie(
        settings.session_cookie,
        token,
        max_age=86400 * settings.session_expiry_days,
        httponly=True,
        samesite="lax",
    )
    return response


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.post("/auth/logout")
async def logout(request: Request) -> Any:
    mgr = JournalServiceManager.get_instance()
    token = get_session_token(request)
    user = mgr.auth.get_session_user(token)
    mgr.auth.logout(token)
    if user:
        mgr.remove_service(user.id)
    response = JSONResponse({"success": True})
    response.delete_cookie(get_settings().session_cookie)
    return response


@app.get("/api/me")
async def me(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_profile()


@app.put("/api/me")
async def update_me(request: Request, body: ProfileUpdate) -> dict[str, Any]:
    return get_user_service(request).update_profile(_payload(body))


@app.get("/api/accounts")
async def list_accounts(request: Request) -> list[dict[str, Any]]:
    return get_user_service(request).list_accounts()


@app.post("/api/accounts")
async def create_account(request: Request, body: AccountCreate) -> dict[str, Any]:
    return get_user_service(request).create_account(_payload(body))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/trades")
async def list_trades(request: Request) -> dict[str, Any]:
    svc = get_user_service(request)
    p = request.query_params
    try:
        limit = int(p.get("limit", 100))
        offset = int(p.get("offset", 0))
    except ValueError:
        raise HTTPException(400, "limit and offset must be integers")
    return svc.list_trades(
        limit=limit, offset=offset, order_by=p.get("order_by", "opened_at DESC"),
        status=p.get("status", ""), instrument=p.get("instrument", ""),
        strategy_id=p.get("strategy_id", ""), direction=p.get("direction", ""),
        session=p.get("session", ""), from_date=p.get("from_date", ""),
        to_date=p.get("to_date", ""), search=p.get("search", ""),
    )


@app.post("/api/trades")
async def create_trade(request: Request, body: TradeCreate) -> dict[str, Any]:
    return get_user_service(request).create_trade(_payload(body))


@app.post("/api/trades/import")
async def import_trades(request: Request, body: ImportRequest) -> dict[str, Any]:
    svc = get_user_service(request)
    result = svc.import_trades(body.content, body.source.value)
    logger.info("trades_imported", user_id=svc.user_id, imported=result["imported"],
                failed=len(result["errors"]))
    return result


@app.get("/api/trades/export")
async def export_trades(request: Request) -> PlainTextResponse:
    csv_text = get_user_service(request).export_trades()
    return PlainTextResponse(csv_text, media_type="text/csv",
                             headers={"Content-Disposition": "attachment; filename=trades.csv"})


@app.get("/api/trades/instruments")
async def trade_instruments(request: Request) -> dict[str, Any]:
    return {"instruments": get_user_service(request).get_instruments()}


@app.get("/api/trades/{trade_id}")
async def get_trade(request: Request, trade_id: str) -> dict[str, Any]:
    return get_user_service(request).get_trade(trade_id)


@app.put("/api/trades/{trade_id}")
async def update_trade(request: Request, trade_id: str, body: TradeUpdate) -> dict[str, Any]:
    return get_user_service(request).update_trade(trade_id, _payload(body))


@app.delete("/api/trades/{trade_id}")
async def delete_trade(request: Request, trade_id: str) -> dict[str, Any]:
    return get_user_service(request).delete_trade(trade_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TAGS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/tags")
async def list_tags(request: Request) -> list[dict[str, Any]]:
    return get_user_service(request).list_tags(request.query_params.get("type", ""))


@app.post("/api/tags")
async def create_tag(request: Request, body: TagCreate) -> dict[str, Any]:
    return get_user_service(request).create_tag(body.name, body.type.value)


@app.delete("/api/tags/{tag_id}")
async def delete_tag(request: Request, tag_id: str) -> dict[str, Any]:
    return get_user_service(request).delete_tag(tag_id)


@app.post("/api/trades/{trade_id}/tags/{tag_id}")
async def attach_tag(request: Request, trade_id: str, tag_id: str) -> dict[str, Any]:
    return get_user_service(request).attach_tag(trade_id, tag_id)


@app.delete("/api/trades/{trade_id}/tags/{tag_id}")
async def detach_tag(request: Request, trade_id: str, tag_id: str) -> dict[str, Any]:
    return get_user_service(request).detach_tag(trade_id, tag_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PLAYBOOK
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/strategies")
async def list_strategies(request: Request) -> list[dict[str, Any]]:
    return get_user_service(request).list_strategies()


@app.get("/api/strategies/stats")
async def playbook_stats(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_playbook_stats()


@app.post("/api/strategies")
async def create_strategy(request: Request, body: StrategyBody) -> dict[str, Any]:
    return get_user_service(request).create_strategy(_payload(body))


@app.get("/api/strategies/{strategy_id}")
async def get_strategy(request: Request, strategy_id: str) -> dict[str, Any]:
    return get_user_service(request).get_strategy(strategy_id)


@app.put("/api/strategies/{strategy_id}")
async def update_strategy(request: Request, strategy_id: str, body: StrategyBody) -> dict[str, Any]:
    return get_user_service(request).update_strategy(strategy_id, _payload(body))


@app.delete("/api/strategies/{strategy_id}")
async def delete_strategy(request: Request, strategy_id: str) -> dict[str, Any]:
    return get_user_service(request).delete_strategy(strategy_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# GOALS & HABITS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/goals")
async def list_goals(request: Request) -> list[dict[str, Any]]:
    return get_user_service(request).list_goals(request.query_params.get("status", ""))


@app.get("/api/goals/stats")
async def goal_stats(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_goal_stats()


@app.post("/api/goals")
async def create_goal(request: Request, body: GoalBody) -> dict[str, Any]:
    return get_user_service(request).create_goal(_payload(body))


@app.put("/api/goals/{goal_id}")
async def update_goal(request: Request, goal_id: str, body: GoalBody) -> dict[str, Any]:
    return get_user_service(request).update_goal(goal_id, _payload(body))


@app.delete("/api/goals/{goal_id}")
async def delete_goal(request: Request, goal_id: str) -> dict[str, Any]:
    return get_user_service(request).delete_goal(goal_id)


@app.get("/api/habits")
async def list_habits(request: Request) -> dict[str, Any]:
    p = request.query_params
    return get_user_service(request).list_habits(p.get("from_date", ""), p.get("to_date", ""))


@app.post("/api/habits")
async def create_habit(request: Request, body: HabitCreate) -> dict[str, Any]:
    return get_user_service(request).create_habit(_payload(body))


@app.delete("/api/habits/{habit_id}")
async def delete_habit(request: Request, habit_id: str) -> dict[str, Any]:
    return get_user_service(request).delete_habit(habit_id)


@app.post("/api/habits/{habit_id}/log")
async def log_habit(request: Request, habit_id: str, body: HabitLogRequest) -> dict[str, Any]:
    return get_user_service(request).log_habit(habit_id, body.date, body.completed)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# WEEKLY REVIEWS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/reviews")
async def list_reviews(request: Request) -> list[dict[str, Any]]:
    return get_user_service(request).list_reviews()


@app.post("/api/reviews")
async def create_review(request: Request, body: ReviewBody) -> dict[str, Any]:
    return get_user_service(request).create_review(_payload(body))


@app.put("/api/reviews/{review_id}")
async def update_review(request: Request, review_id: str, body: ReviewBody) -> dict[str, Any]:
    return get_user_service(request).update_review(review_id, _payload(body))


@app.post("/api/reviews/{review_id}/summarize")
async def summarize_review(request: Request, review_id: str) -> dict[str, Any]:
    return await get_user_service(request).summarize_review(review_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ANALYTICS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/analytics")
async def analytics(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_analytics(request.query_params.get("period", "all"))


@app.get("/api/analytics/periods")
async def analytics_periods(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_period_metrics()


@app.get("/api/analytics/daily-pnl")
async def daily_pnl(request: Request) -> list[dict[str, Any]]:
    try:
        days = int(request.query_params.get("days", 30))
    except ValueError:
        raise HTTPException(400, "days must be an integer")
    return get_user_service(request).get_daily_pnl(days)


@app.get("/api/dashboard")
async def dashboard(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_dashboard()


@app.get("/api/journal/summary")
async def journal_summary(request: Request) -> dict[str, Any]:
    return get_user_service(request).get_journal_summary()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AI COMMENTARY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.post("/api/ai/predict-trade")
async def predict_trade(request: Request, body: PredictRequest) -> dict[str, Any]:
    return await get_user_service(request).predict_trade(body.tradeData)


@app.post("/api/ai/analyze-trades")
async def analyze_trades(request: Request, body: AnalyzeRequest) -> dict[str, Any]:
    return await get_user_service(request).analyze_trades(body.period.value)


@app.get("/api/ai/summaries")
async def ai_summaries(request: Request) -> list[dict[str, Any]]:
    p = request.query_params
    return get_user_service(request).list_ai_summaries(p.get("type", ""), p.get("target_id", ""))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MARKET TICKER
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@app.get("/api/market/ticker")
async def market_ticker() -> dict[str, Any]:
    return JournalServiceManager.get_instance().ticker.snapshot()


@app.post("/api/market/refresh")
async def market_refresh() -> dict[str, Any]:
    ticker = JournalServiceManager.get_instance().ticker
    updated = await ticker.poll_once()
    return {"updated": updated, **ticker.snapshot()}
