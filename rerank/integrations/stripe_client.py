"""
Stripe Client

Configures the stripe module from settings. Billing code calls the module
API (stripe.Customer, stripe.checkout.Session, ...) after get_stripe().
"""

import logging
from datetime import datetime
from typing import Any, Optional

import stripe

from rerank.config import get_settings

logger = logging.getLogger(__name__)


class StripeNotConfiguredError(Exception):
    """STRIPE_SECRET_KEY is missing."""
    pass


def is_configured() -> bool:
    return bool(get_settings().STRIPE_SECRET_KEY)


def get_stripe():
    """
    The stripe module with api_key set.

    Raises:
        StripeNotConfiguredError: If STRIPE_SECRET_KEY is not set
    """
    secret_key = get_settings().STRIPE_SECRET_KEY
    if not secret_key:
        raise StripeNotConfiguredError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = secret_key
    return stripe


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds to naive UTC datetime."""
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value))


def subscription_period(subscription: Any) -> tuple:
    """
    (current_period_start, current_period_end) of a subscription.

    Newer API versions moved the period onto the subscription items.
    """
    start = get_field(subscription, "current_period_start")
    end = get_field(subscription, "current_period_end")
    if start is None or end is None:
        items = get_field(subscription, "items") or {}
        data = get_field(items, "data") or []
        if data:
            start = start if start is not None else get_field(data[0], "current_period_start")
            end = end if end is not None else get_field(data[0], "current_period_end")
    return from_timestamp(start), from_timestamp(end)


def get_field(obj: Any, key: str) -> Any:
    """Field access that works for both dicts and StripeObjects."""
    if obj is None:
        return None
    try:
        return obj.get(key)
    except AttributeError:
        return getattr(obj, key, None)
