from fastapi import APIRouter

from overlay.api.routes import polls, stream

api_router = APIRouter()

api_router.include_router(polls.router, prefix="/polls", tags=["polls"])
api_router.include_router(stream.router, tags=["stream"])
