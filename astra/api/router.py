"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from astra.api.webhooks import router as webhooks_router
from astra.api.leads import router as leads_router
from astra.api.orders import router as orders_router
from astra.api.integrations import router as integrations_router
from astra.api.notifications import router as notifications_router
from astra.api.webhook_debug import router as webhook_debug_router
from astra.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(leads_router)
api_router.include_router(orders_router)
api_router.include_router(integrations_router)
api_router.include_router(notifications_router)
api_router.include_router(webhook_debug_router)
api_router.include_router(health_router)
