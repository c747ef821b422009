"""
API route modules.

Each module defines routes for one inbound surface.
"""

from routes.whatsapp_webhook import router as whatsapp_webhook_router
from routes.cron import router as cron_router

__all__ = [
    "whatsapp_webhook_router",
    "cron_router",
]
