"""
API Router v1

Combines all route modules.
"""

from fastapi import APIRouter

from app.api.v1.routes import integrations, webhooks

api_router = APIRouter()

api_router.include_router(integrations.router)
api_router.include_router(webhooks.router)
