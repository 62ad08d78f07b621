"""Revenue categorization of payments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from gym_accounting.models.database import Payment

logger = logging.getLogger(__name__)


class RevenueCategory(str, Enum):
    DAY_PASS = "day_pass"
    SERVICE_PT = "service_pt"
    SERVICE_SPECIALTY_CLASS = "service_specialty_class"
    SERVICE_SPORTS_MASSAGE = "service_sports_massage"
    SERVICE_NUTRITION = "service_nutrition"
    SERVICE_PHYSIO = "service_physio"
    REFUND = "refund"


# Every one of these needs an account mapping before a sync may run
REQUIRED_CATEGORIES: tuple[RevenueCategory, ...] = tuple(RevenueCategory)

UNMAPPED = "unmapped"

_SERVICE_TYPES: dict[str, tuple[RevenueCategory, str]] = {
    "pt": (RevenueCategory.SERVICE_PT, "Personal Training Session"),
    "specialty_class": (RevenueCategory.SERVICE_SPECIALTY_CLASS, "Specialty Class"),
    "sports_massage": (RevenueCategory.SERVICE_SPORTS_MASSAGE, "Sports Massage"),
    "nutrition": (RevenueCategory.SERVICE_NUTRITION, "Nutrition Coaching"),
    "physio": (RevenueCategory.SERVICE_PHYSIO, "Physiotherapy"),
}


@dataclass(frozen=True)
class CategorizedPayment:
    """A payment with its revenue category, ready for export."""

    payment_id: str
    category: Optional[RevenueCategory]
    description: str
    amount: int
    currency: str
    user_id: Optional[str]
    payment_intent_id: Optional[str]
    created_at: datetime

    def __post_init__(self):
        if not self.payment_id:
            raise ValueError("payment_id is required")
        if self.amount is None:
            raise ValueError(f"Payment {self.payment_id} has no amount")

    @property
    def category_key(self) -> str:
        """Category value, or "unmapped" when the payment matched no rule."""
        return self.category.value if self.category else UNMAPPED

    @property
    def is_refund(self) -> bool:
        return self.category == RevenueCategory.REFUND


def _classify(payment: Payment) -> tuple[Optional[RevenueCategory], str]:
    if payment.status == "refunded" or payment.payment_type == "refund":
        return RevenueCategory.REFUND, "Refund"

    if payment.payment_type == "day-pass":
        return RevenueCategory.DAY_PASS, "Day Pass"

    if payment.payment_type == "service-booking":
        service_type = (payment.payment_metadata or {}).get("service_type")
        if service_type in _SERVICE_TYPES:
            return _SERVICE_TYPES[service_type]
        logger.warning(f"Unknown service type {service_type!r} on payment {payment.id}, defaulting to PT")
        return RevenueCategory.SERVICE_PT, "Service Booking"

    logger.warning(f"Unknown payment type {payment.payment_type!r} on payment {payment.id}, leaving unmapped")
    return None, "Payment"


def categorize_payment(payment: Payment) -> CategorizedPayment:
    """Map a payment row to its revenue category and description."""
    category, description = _classify(payment)
    return CategorizedPayment(
        payment_id=payment.id,
        category=category,
        description=description,
        amount=payment.amount,
        currency=payment.currency,
        user_id=payment.user_id,
        payment_intent_id=payment.payment_intent_id,
        created_at=payment.created_at,
    )


def categorize_payments(payments: list[Payment]) -> list[CategorizedPayment]:
    return [categorize_payment(p) for p in payments]
