import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from overlay.api.deps import get_hub, get_redis_client, get_state_store
from overlay.api.router import api_router
from overlay.core.config import get_settings
from overlay.services.broadcast_relay import BroadcastRelay

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup and shutdown.

    Subscribes the local broadcast hub to the shared relay channel so
    snapshots published by other processes (workers, other replicas) reach
    the displays connected here.
    """
    # Startup
    relay_task = None
    if settings.broadcast_relay_enabled:
        relay = BroadcastRelay(get_state_store())
        relay_task = asyncio.create_task(relay.listen(get_hub()))
    yield
    # Shutdown
    if relay_task is not None:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
    await get_redis_client().aclose()


app = FastAPI(
    title=settings.app_name,
    description="Live poll engine and overlay sync for stream displays",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Overlays run as browser sources on arbitrary origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(api_router, prefix="/api")
