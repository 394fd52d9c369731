"""
Billing

- currency: supported currencies, fixed exchange rates, price formatting
- plans: plan limits, trial and subscription state
- checkout: Stripe checkout, portal, invoices, trials
- webhooks: Stripe webhook verification and handling
"""

from .currency import (
    SUPPORTED_CURRENCIES,
    DEFAULT_EXCHANGE_RATES,
    convert_price,
    format_price,
    currency_from_locale,
    detect_currency,
    is_valid_currency,
    get_stripe_price_id,
)
from .plans import (
    PlanLimitError,
    PlanLimitCheck,
    check_user_plan_limit,
    enforce_plan_limit,
    is_trial_active,
    has_active_subscription,
    usage_summary,
)
from .checkout import (
    BillingError,
    cancel_subscription,
    change_subscription,
    create_checkout_session,
    create_portal_session,
    list_invoices,
    start_trial,
    verify_checkout_session,
)
from .webhooks import WebhookError, construct_event, handle_event

__all__ = [
    "SUPPORTED_CURRENCIES",
    "DEFAULT_EXCHANGE_RATES",
    "convert_price",
    "format_price",
    "currency_from_locale",
    "detect_currency",
    "is_valid_currency",
    "get_stripe_price_id",
    "PlanLimitError",
    "PlanLimitCheck",
    "check_user_plan_limit",
    "enforce_plan_limit",
    "is_trial_active",
    "has_active_subscription",
    "usage_summary",
    "BillingError",
    "create_checkout_session",
    "create_portal_session",
    "list_invoices",
    "start_trial",
    "change_subscription",
    "cancel_subscription",
    "verify_checkout_session",
    "WebhookError",
    "construct_event",
    "handle_event",
]
