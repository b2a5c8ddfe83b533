"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import campaigns, entries, sync, webhooks

api_router = APIRouter()

api_router.include_router(
    campaigns.router,
    prefix="/campaigns",
    tags=["campaigns"]
)

api_router.include_router(
    entries.router,
    prefix="/entries",
    tags=["entries"]
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["sync"]
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"]
)
