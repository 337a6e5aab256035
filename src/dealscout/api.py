from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel, Field, field_validator

from dealscout.analyzer import ListingAnalyzer, ListingModel
from dealscout.auth import BearerAuth, RateLimiter, SessionManager, SessionUser, hash_password, verify_password
from dealscout.gemini import GeminiListingModel
from dealscout.logging_config import configure_logging, correlation_id, new_correlation_id
from dealscout.nhtsa import VehicleRecordLookup
from dealscout.settings import ServiceSettings
from dealscout.storage import DealStore, DuplicateEmailError, RedisCache
from listing_analysis.data_models import ListingAnalysis
from listing_analysis.errors import AnalysisError, RateLimitError

logger = logging.getLogger(__name__)


# ── Request / Response Models ───────────────────────────────────────

class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        email = value.strip().lower()
        if "@" not in email:
            raise ValueError("invalid email address")
        return email


class SignupRequest(LoginRequest):
    password: str = Field(min_length=8, max_length=256)


class UserOut(BaseModel):
    email: str


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class AnalyzeRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)


class SaveDealRequest(ListingAnalysis):
    """A favourited analysis. The web client does not echo mileage back."""

    url: str = Field(min_length=1, max_length=2048)
    mileage: float | None = None


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, bool]


def _deal_out(row: dict[str, Any]) -> dict[str, Any]:
    created_at = row["created_at"]
    return {
        **row["analysis_json"],
        "id": row["id"],
        "url": row["url"],
        "createdAt": created_at.isoformat() if hasattr(created_at, "isoformat") else created_at,
    }


# ── App Factory ─────────────────────────────────────────────────────

def create_app(
    settings: ServiceSettings | None = None,
    *,
    model: ListingModel | None = None,
) -> FastAPI:
    """Build the service.

    ``model`` replaces the Gemini client (tests, alternative providers);
    without it ``GEMINI_API_KEY`` must be set or startup fails.
    """
    settings = settings or ServiceSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    analysis_config = settings.analysis_config()
    if model is None:
        model = GeminiListingModel(api_key=settings.gemini_api_key, config=analysis_config)

    cache = RedisCache(redis_url=settings.redis_url)
    store = DealStore(dsn=settings.postgres_dsn)
    lookup = VehicleRecordLookup(
        vpic_base_url=settings.nhtsa_vpic_base_url,
        api_base_url=settings.nhtsa_api_base_url,
        timeout_seconds=settings.nhtsa_timeout_seconds,
        cache=cache,
        cache_ttl_seconds=settings.vehicle_cache_ttl_seconds,
    )
    analyzer = ListingAnalyzer(model=model, lookup=lookup, config=analysis_config)

    sessions = SessionManager(cache=cache, ttl_seconds=settings.session_ttl_seconds)
    auth = BearerAuth(sessions)
    limiter = RateLimiter(requests_per_minute=settings.rate_limit_rpm)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await cache.connect()
        await store.connect()
        try:
            yield
        finally:
            await cache.close()
            await store.close()

    app = FastAPI(title="Deal Scout API", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        cid = request.headers.get("X-Correlation-ID") or new_correlation_id()
        correlation_id.set(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response

    # ── Accounts ────────────────────────────────────────────────────

    @app.post("/api/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
    async def signup(payload: SignupRequest) -> AuthResponse:
        try:
            user = await store.create_user(payload.email, hash_password(payload.password))
        except DuplicateEmailError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered") from exc
        token = await sessions.issue(user["id"], user["email"])
        logger.info("Created account %s", user["id"])
        return AuthResponse(token=token, user=UserOut(email=user["email"]))

    @app.post("/api/auth/login", response_model=AuthResponse)
    async def login(payload: LoginRequest) -> AuthResponse:
        user = await store.get_user_by_email(payload.email)
        if user is None or not verify_password(payload.password, user["password_hash"]):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
        token = await sessions.issue(user["id"], user["email"])
        return AuthResponse(token=token, user=UserOut(email=user["email"]))

    @app.post("/api/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    async def logout(user: SessionUser = Depends(auth)) -> Response:
        await sessions.revoke(user.token)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ── Analysis ────────────────────────────────────────────────────

    @app.post("/api/analyze", dependencies=[Depends(auth), Depends(limiter)])
    async def analyze(payload: AnalyzeRequest) -> dict[str, Any]:
        try:
            analysis = await analyzer.analyze(payload.url)
        except RateLimitError as exc:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.user_message) from exc
        except AnalysisError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message) from exc
        return analysis.to_wire()

    # ── Saved Deals ─────────────────────────────────────────────────

    @app.get("/api/deals")
    async def list_deals(user: SessionUser = Depends(auth)) -> list[dict[str, Any]]:
        rows = await store.list_deals(user.user_id)
        return [_deal_out(r) for r in rows]

    @app.post("/api/deals", status_code=status.HTTP_201_CREATED)
    async def save_deal(payload: SaveDealRequest, user: SessionUser = Depends(auth)) -> dict[str, Any]:
        analysis = payload.to_wire()
        analysis.pop("url")
        row = await store.insert_deal(user.user_id, payload.url, analysis)
        return _deal_out(row)

    @app.delete("/api/deals/{deal_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_deal(deal_id: str, user: SessionUser = Depends(auth)) -> Response:
        if not await store.delete_deal(user.user_id, deal_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ── Health ──────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=ReadinessResponse)
    async def ready() -> ReadinessResponse:
        checks = {
            "redis": await cache.ping(),
            "database": await store.ping(),
        }
        if not all(checks.values()):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ReadinessResponse(status="degraded", checks=checks).model_dump(),
            )
        return ReadinessResponse(status="ready", checks=checks)

    return app
