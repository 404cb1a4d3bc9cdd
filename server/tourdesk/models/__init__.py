"""Models module exporting all database models."""

from .booking import ACTIVE_BOOKING_STATUSES, Booking, BookingProduct, BookingStatus
from .idempotency import IdempotencyRecord
from .payment import Payment, PaymentStatus
from .product import Product, TourProduct
from .promo import DiscountType, PromoCode
from .rental import Rental
from .schedule import RecurrenceRule, ScheduledOccurrence
from .tour import Tour
from .user import User, UserRole

__all__ = [
    # Catalogue
    "Tour",
    "Product",
    "TourProduct",
    "Rental",

    # Scheduling
    "RecurrenceRule",
    "ScheduledOccurrence",

    # Bookings and payments
    "Booking",
    "BookingProduct",
    "BookingStatus",
    "ACTIVE_BOOKING_STATUSES",
    "Payment",
    "PaymentStatus",

    # Promotions
    "PromoCode",
    "DiscountType",

    # People
    "User",
    "UserRole",

    # Idempotency entity
    "IdempotencyRecord",
]
