"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from ordercore.api.cron import router as cron_router
from ordercore.api.duplicates import router as duplicates_router
from ordercore.api.health import router as health_router
from ordercore.api.orders import router as orders_router
from ordercore.api.products import router as products_router
from ordercore.api.system_settings import router as system_settings_router

__all__ = [
    "cron_router",
    "duplicates_router",
    "health_router",
    "orders_router",
    "products_router",
    "system_settings_router",
]
