"""FastAPI routers package."""

from .booking import router as booking_router
from .health import router as health_router
from .metrics import router as metrics_router
from .payment import router as payment_router
from .product import router as product_router
from .promo import router as promo_router
from .rental import router as rental_router
from .schedule import router as schedule_router
from .tour import router as tour_router
from .user import router as user_router
from .webhook import router as webhook_router

__all__ = [
    "booking_router",
    "health_router",
    "metrics_router",
    "payment_router",
    "product_router",
    "promo_router",
    "rental_router",
    "schedule_router",
    "tour_router",
    "user_router",
    "webhook_router",
]
