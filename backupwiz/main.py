# backupwiz/main.py

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from backupwiz import __version__
from backupwiz.core.config import get_settings
from backupwiz.core.logging_config import configure_logging
from backupwiz.core.security import get_current_username
from backupwiz.routes import health
from backupwiz.routes import sync as sync_routes
from backupwiz.scheduler import get_scheduler_status, start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    if settings.SYNC_SCHEDULE_ENABLED:
        await start_scheduler()
    try:
        yield
    finally:
        await stop_scheduler()


app = FastAPI(
    title="3CX BackupWiz",
    version=__version__,
    lifespan=lifespan,
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    response = await call_next(request)
    return response


app.include_router(sync_routes.router, dependencies=[Depends(get_current_username)])
app.include_router(health.router)  # Health check should be accessible without auth


@app.get("/api/scheduler", dependencies=[Depends(get_current_username)])
async def scheduler_status():
    return await get_scheduler_status()
