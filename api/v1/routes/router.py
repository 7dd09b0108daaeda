from fastapi import APIRouter

from api.v1.routes import (
    health,
)
from packages.billing.routes import billing, webhooks

api_router = APIRouter()

# Health check (no auth required)
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Webhooks (no auth - signature verified internally)
api_router.include_router(webhooks.router, tags=["webhooks"])

# Internal billing routes (not exposed via ingress)
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
