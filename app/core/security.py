import jwt
import logging
from datetime import datetime, timedelta, timezone
from fastapi import Request
from app.config import settings
from typing import Optional

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session-token"


def create_session_token(user_id: str, email: str, expires_in: timedelta = timedelta(days=30)) -> str:
    """Create a JWT session token"""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "email": email,
        "iat": now,
        "exp": now + expires_in
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def verify_session_token(token: str) -> Optional[dict]:
    """Verify a JWT session token and return payload"""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if not payload.get("user_id"):
        return None

    return {
        "user_id": payload.get("user_id"),
        "email": payload.get("email")
    }


def get_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_cookie_session(session_token: str) -> Optional[dict]:
    """Look up an active, unexpired session row"""
    from app.database import get_db_connection

    async with get_db_connection() as conn:
        session_result = await conn.fetchrow("""
            SELECT s.user_id, s.expires_at, u.email, u.name
            FROM sessions s
            JOIN users u ON s.user_id = u.id
            WHERE s.id = $1
              AND s.expires_at > NOW()
              AND s.is_active = true
            LIMIT 1
        """, session_token)

        if not session_result:
            return None

        await conn.execute("""
            UPDATE sessions
            SET last_activity_at = NOW()
            WHERE id = $1
        """, session_token)

        return {
            "user_id": str(session_result["user_id"]),
            "email": session_result["email"],
            "name": session_result["name"]
        }


async def get_session_from_request(request: Request) -> Optional[dict]:
    """
    Resolve the caller from a Bearer JWT, falling back to the session cookie.
    Requests carrying neither never touch the database.
    """
    bearer = get_bearer_token(request)
    if bearer:
        return verify_session_token(bearer)

    session_token = request.cookies.get(SESSION_COOKIE)
    if not session_token:
        return None

    try:
        return await get_cookie_session(session_token)
    except Exception as e:
        logger.error(f"Error in get_session_from_request: {e}", exc_info=True)
        return None


def get_client_ip(request: Request) -> Optional[str]:
    """Get client IP address from request headers"""
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.client.host if request.client else None
