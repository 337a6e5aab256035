from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import JSON, Column, DateTime, Float, Integer, MetaData, String, Table, Text, delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)


metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True, index=True),
    Column("password_hash", String(256), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

deals_table = Table(
    "deals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("url", Text, nullable=False),
    Column("make", String(255), nullable=False),
    Column("model", String(255), nullable=False),
    Column("year", Integer, nullable=False),
    Column("price", Float, nullable=False),
    Column("deal_rating", String(16), nullable=False),
    Column("deal_score", Integer, nullable=False),
    Column("analysis_json", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


class DuplicateEmailError(ValueError):
    pass


class RedisCache:
    def __init__(self, redis_url: str, namespace: str = "dealscout") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(client.ping(), timeout=0.75)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis unavailable at %s, using in-process cache: %s", self.redis_url, exc)
            await client.aclose()
            return
        self._client = client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=0.75))
        except (RedisError, OSError, asyncio.TimeoutError):
            return False

    def _mem_get(self, full_key: str) -> str | None:
        expires = self._expiry.get(full_key)
        if expires is not None and time.monotonic() > expires:
            self._mem.pop(full_key, None)
            self._expiry.pop(full_key, None)
            return None
        return self._mem.get(full_key)

    async def get_json(self, key: str) -> Any | None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                raw = await self._client.get(full_key)
            except RedisError as exc:
                logger.warning("Redis GET failed for %s: %s", full_key, exc)
                return None
            return None if raw is None else json.loads(raw)
        raw = self._mem_get(full_key)
        return None if raw is None else json.loads(raw)

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        full_key = self._build_key(key)
        payload = json.dumps(value)
        if self._client is not None:
            try:
                await self._client.set(full_key, payload, ex=ttl_seconds)
                return
            except RedisError as exc:
                logger.warning("Redis SET failed for %s, keeping value in process: %s", full_key, exc)
        self._mem[full_key] = payload
        self._expiry[full_key] = time.monotonic() + ttl_seconds

    async def delete(self, key: str) -> None:
        full_key = self._build_key(key)
        self._mem.pop(full_key, None)
        self._expiry.pop(full_key, None)
        if self._client is not None:
            try:
                await self._client.delete(full_key)
            except RedisError as exc:
                logger.warning("Redis DEL failed for %s: %s", full_key, exc)


class DealStore:
    """Users and saved deals.

    Backed by the SQL database when it is reachable at startup, otherwise by
    process memory (development mode).
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.engine: AsyncEngine | None = None
        self._fallback_mode = False
        self._mem_users: list[dict[str, Any]] = []
        self._mem_deals: list[dict[str, Any]] = []

    async def connect(self) -> None:
        try:
            self.engine = create_async_engine(self.dsn, future=True)
            await self.init_schema()
        except Exception as exc:
            logger.warning("Database unavailable, storing users and deals in memory: %s", exc)
            if self.engine is not None:
                await self.engine.dispose()
            self._fallback_mode = True
            self.engine = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def ping(self) -> bool:
        if self.engine is None or self._fallback_mode:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except Exception:
            return False

    async def init_schema(self) -> None:
        if self.engine is None:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    # ── Users ───────────────────────────────────────────────────────

    async def create_user(self, email: str, password_hash: str) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "email": email,
            "password_hash": password_hash,
            "created_at": datetime.now(timezone.utc),
        }
        if self.engine is None:
            if any(u["email"] == email for u in self._mem_users):
                raise DuplicateEmailError(email)
            self._mem_users.append(row)
            return row
        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(users_table).values(**row))
        except IntegrityError as exc:
            raise DuplicateEmailError(email) from exc
        return row

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        if self.engine is None:
            for user in self._mem_users:
                if user["email"] == email:
                    return user
            return None
        stmt = select(users_table).where(users_table.c.email == email)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return dict(row._mapping) if row else None

    # ── Deals ───────────────────────────────────────────────────────

    async def insert_deal(self, user_id: str, url: str, analysis: dict[str, Any]) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "url": url,
            "make": str(analysis["make"]),
            "model": str(analysis["model"]),
            "year": int(analysis["year"]),
            "price": float(analysis["price"]),
            "deal_rating": analysis["dealRating"],
            "deal_score": int(analysis["dealScore"]),
            "analysis_json": analysis,
            "created_at": datetime.now(timezone.utc),
        }
        if self.engine is None:
            self._mem_deals.append(row)
            return row
        async with self.engine.begin() as conn:
            await conn.execute(insert(deals_table).values(**row))
        return row

    async def list_deals(self, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
        if self.engine is None:
            owned = [d for d in reversed(self._mem_deals) if d["user_id"] == user_id]
            return owned[:limit]
        stmt = (
            select(deals_table)
            .where(deals_table.c.user_id == user_id)
            .order_by(deals_table.c.created_at.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [dict(r._mapping) for r in rows]

    async def delete_deal(self, user_id: str, deal_id: str) -> bool:
        if self.engine is None:
            for i, deal in enumerate(self._mem_deals):
                if deal["id"] == deal_id and deal["user_id"] == user_id:
                    del self._mem_deals[i]
                    return True
            return False
        stmt = (
            delete(deals_table)
            .where(deals_table.c.id == deal_id)
            .where(deals_table.c.user_id == user_id)
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount > 0
