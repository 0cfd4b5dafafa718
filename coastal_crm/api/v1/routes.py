"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from coastal_crm.api.v1.endpoints import (
    dialer,
    webhooks,
)

api_router = APIRouter()

api_router.include_router(dialer.router)

# Provider callbacks (no auth)
api_router.include_router(webhooks.router)
