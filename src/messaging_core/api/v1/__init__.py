from fastapi import APIRouter

from .routers import conversations, messages, realtime

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(conversations.router)
api_router.include_router(messages.router)
api_router.include_router(realtime.router)

__all__ = ["api_router"]
