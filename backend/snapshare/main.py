"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from snapshare.config import settings
from snapshare.database import engine, get_db
from snapshare.errors import RateLimited, SnapshareError
from snapshare.schemas.common import ErrorResponse, LimitInfo, RateLimitedResponse
from snapshare.logging_config import setup_logging
from snapshare.models import Base

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start the quota counter sweeper."""
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sweeper_task = None
    if settings.QUOTA_STRATEGY == "bucketed":
        from snapshare.services.counter_sweeper import sweeper_loop
        sweeper_task = asyncio.create_task(sweeper_loop())

    yield

    # Cleanup
    if sweeper_task:
        sweeper_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="SnapShare API",
    version="1.0.0",
    description="Presigned uploads, quotas, and live channel file feeds.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)


@app.exception_handler(SnapshareError)
async def snapshare_error_handler(request: Request, exc: SnapshareError):
    """Translate domain errors into the {success, error} envelope."""
    if isinstance(exc, RateLimited):
        decision = exc.decision
        body = RateLimitedResponse(
            error=exc.message,
            limit=LimitInfo(
                current=decision.current,
                max=decision.max,
                window=decision.window,
                unit=decision.unit,
            ),
        )
    else:
        body = ErrorResponse(error=exc.message)
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies use the same 400 envelope as other client errors."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content=ErrorResponse(error="; ".join(messages)).model_dump())


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from snapshare.routes.uploads import router as uploads_router
from snapshare.routes.files import router as files_router
app.include_router(uploads_router)
app.include_router(files_router)
