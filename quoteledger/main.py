"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from quoteledger.config import settings
from quoteledger.database import SQLALCHEMY_DATABASE_URL, engine, Base
from quoteledger.api.routes import router
from quoteledger.request_context import context_from_headers, reset_current, set_current
from quoteledger.services.rate_limit import InMemoryCounterStore, RateLimiter
# Import models to register them with SQLAlchemy Base
from quoteledger.models.domain import Agreement, MonthlyUsage, User  # noqa: F401
from quoteledger.models.audit import AuditEvent  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Local SQLite gets its tables directly; Postgres is managed by Alembic
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="QuoteLedger",
    description="Quote-to-deposit agreements with locked commercial terms and an append-only timeline.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.rate_limiter = RateLimiter(
    InMemoryCounterStore(),
    settings.RATE_LIMIT_MAX_REQUESTS,
    settings.RATE_LIMIT_WINDOW_SECONDS,
)


@app.middleware("http")
async def capture_request_context(request: Request, call_next):
    """Make IP address and user agent available to the audit log for this request."""
    peer = request.client.host if request.client else None
    token = set_current(context_from_headers(request.headers, peer))
    try:
        return await call_next(request)
    finally:
        reset_current(token)


app.include_router(router, prefix="/api", tags=["Agreements"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "QuoteLedger"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
