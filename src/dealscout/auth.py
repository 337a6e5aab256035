from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass

from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dealscout.storage import RedisCache

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)

_PBKDF2_ALGORITHM = "pbkdf2_sha256"
_PBKDF2_ITERATIONS = 240_000


def hash_password(password: str, *, iterations: int = _PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return f"{_PBKDF2_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
        salt = bytes.fromhex(salt_hex)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != _PBKDF2_ALGORITHM:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, rounds)
    return hmac.compare_digest(candidate.hex(), digest_hex)


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: str
    token: str


class SessionManager:
    """Opaque bearer tokens kept in the cache with a TTL.

    Tokens are stored as SHA-256 hashes so a cache dump does not leak live
    credentials.
    """

    def __init__(self, cache: RedisCache, ttl_seconds: int) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"session:{hashlib.sha256(token.encode()).hexdigest()}"

    async def issue(self, user_id: str, email: str) -> str:
        token = secrets.token_urlsafe(32)
        await self.cache.set_json(
            self._key(token),
            {"user_id": user_id, "email": email},
            ttl_seconds=self.ttl_seconds,
        )
        return token

    async def resolve(self, token: str) -> SessionUser | None:
        if not token:
            return None
        payload = await self.cache.get_json(self._key(token))
        if not payload:
            return None
        return SessionUser(user_id=payload["user_id"], email=payload["email"], token=token)

    async def revoke(self, token: str) -> None:
        await self.cache.delete(self._key(token))


class BearerAuth:
    """FastAPI dependency resolving ``Authorization: Bearer`` to a session user."""

    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions

    async def __call__(
        self, credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    ) -> SessionUser:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        user = await self.sessions.resolve(credentials.credentials)
        if user is None:
            logger.warning("Rejected request with unknown or expired session token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired session",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user


class RateLimiter:
    """In-memory sliding-window limiter per client IP.

    Guards the analysis endpoint so one client cannot burn the shared model
    quota.
    """

    window_seconds = 60.0

    def __init__(self, requests_per_minute: int = 30) -> None:
        self.rpm = requests_per_minute
        self._hits: dict[str, list[float]] = {}

    def _evict_idle(self, cutoff: float) -> None:
        # hit lists are in arrival order, so the last entry is the newest
        idle = [ip for ip, hits in self._hits.items() if hits[-1] <= cutoff]
        for ip in idle:
            del self._hits[ip]

    def check(self, client_ip: str, *, now: float | None = None) -> bool:
        if self.rpm <= 0:
            return True
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds
        self._evict_idle(cutoff)
        hits = [t for t in self._hits.get(client_ip, ()) if t > cutoff]
        if len(hits) >= self.rpm:
            self._hits[client_ip] = hits
            return False
        self._hits[client_ip] = hits + [now]
        return True

    async def __call__(self, request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        if not self.check(client_ip):
            logger.warning("Rate limit exceeded for %s", client_ip)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many analysis requests. Please wait a minute and try again.",
            )
