import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Dict, Any
from fastapi import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

PUBLIC_PATHS = {'/', '/health', '/docs', '/redoc', '/openapi.json'}
PUBLIC_PREFIXES = ('/docs', '/invitations/code/')


@dataclass
class SessionContext:
    """Caller identity resolved for the current request"""
    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_session(cls, session_data: Optional[Dict[str, Any]]) -> "SessionContext":
        if not session_data:
            return cls()
        return cls(
            user_id=session_data['user_id'],
            email=session_data.get('email'),
            name=session_data.get('name')
        )

    @property
    def is_valid(self) -> bool:
        return self.user_id is not None


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


async def session_validation_middleware(request: Request, call_next):
    """
    Resolve the caller (Bearer JWT or session cookie) for protected paths.
    Endpoints read it from request.state.session_context; public paths get
    an anonymous context without touching the session store.
    """
    if is_public_path(request.url.path):
        request.state.session_context = SessionContext()
        return await call_next(request)

    from app.core.security import get_session_from_request
    request.state.session_context = SessionContext.from_session(await get_session_from_request(request))

    return await call_next(request)


def get_session_context(request: Request) -> SessionContext:
    return getattr(request.state, 'session_context', None) or SessionContext()


async def request_logging_middleware(request: Request, call_next):
    """Log one line per request and echo a request id back to the client"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    start_time = time.perf_counter()

    response = await call_next(request)

    duration = round((time.perf_counter() - start_time) * 1000, 2)
    user_id = get_session_context(request).user_id or 'anonymous'
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} | {response.status_code} | {duration}ms | {user_id}"
    )

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
