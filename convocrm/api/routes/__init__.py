"""API routes."""

from fastapi import APIRouter

from convocrm.api.routes import conversations, orders, partner_webhooks, telegram_webhooks

api_router = APIRouter()

# Inbound webhooks (shared-secret checks live on the routers)
api_router.include_router(telegram_webhooks.router, prefix="/telegram", tags=["telegram-webhooks"])
api_router.include_router(partner_webhooks.router, prefix="/partner", tags=["partner-webhooks"])

# Manager-facing routes
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(conversations.router, tags=["conversations"])
