from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.core.logging import setup_logging
from app.core.exceptions import api_exception_handler, general_exception_handler, APIError
from app.core.middleware import session_validation_middleware, request_logging_middleware
from app.database import DatabasePool

# Initialize logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    if settings.persistence_backend == "postgres" and settings.db_apply_schema:
        await DatabasePool.apply_schema()

    yield

    # Shutdown: release pooled connections if any were opened
    await DatabasePool.close_pool()


app = FastAPI(
    title="DwellTime API",
    description="Detention tracking, invoicing and fleet membership for truck drivers",
    version="1.0.0",
    debug=settings.debug,
    docs_url="/docs",
    redirect_slashes=True,
    lifespan=lifespan
)

# Configure bearer/cookie authentication for Swagger UI
from fastapi.openapi.utils import get_openapi

def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title="DwellTime API",
        version="1.0.0",
        description="Detention tracking, invoicing and fleet membership for truck drivers",
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        },
        "cookieAuth": {
            "type": "apiKey",
            "in": "cookie",
            "name": "session-token"
        }
    }

    # Public endpoints (no auth required)
    public_endpoints = ["/health", "/"]
    public_prefixes = ["/invitations/code"]

    for path in openapi_schema["paths"]:
        if path in public_endpoints:
            continue
        if any(path.startswith(prefix) for prefix in public_prefixes):
            continue

        for method in openapi_schema["paths"][path]:
            if method in ["get", "post", "put", "delete", "patch"]:
                openapi_schema["paths"][path][method]["security"] = [{"bearerAuth": []}, {"cookieAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# Exception handlers
app.add_exception_handler(APIError, api_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware (order matters - first added runs last)
# Execution order: session_validation → logging
app.middleware("http")(request_logging_middleware)   # runs last
app.middleware("http")(session_validation_middleware) # runs first

# Import and include routers
from app.routers import (
    detention_events, invoices, fleet_invoices, fleet_members, invitations, contacts
)

# Detention tracking (requires auth)
app.include_router(detention_events.router, prefix="/detention-events", tags=["detention-events"])

# Invoicing (requires auth)
app.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
app.include_router(fleet_invoices.router, prefix="/fleets", tags=["fleet-invoices"])

# Fleets (requires auth)
app.include_router(fleet_members.router, prefix="/fleets", tags=["fleet-members"])

# Invitations (lookup by code is public, everything else requires auth)
app.include_router(invitations.router, tags=["invitations"])

# Saved recipients (requires auth)
app.include_router(contacts.router, prefix="/contacts", tags=["contacts"])

@app.get("/")
async def root():
    return {
        "service": "DwellTime API",
        "version": "1.0.0",
        "environment": settings.app_env
    }

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "persistence": settings.persistence_backend,
        "database": settings.db_name,
        "pool_open": DatabasePool.is_open()
    }

# Auto-start server if run directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
