"""
Currencies and fixed exchange rates.

Plan prices are stored in USD cents. Other currencies are derived with fixed
rates; amounts are in the currency's minor unit (yen for JPY, cents otherwise).
"""

from typing import Any, Dict, Optional

SUPPORTED_CURRENCIES = ("USD", "JPY", "EUR", "GBP")
DEFAULT_CURRENCY = "USD"

# 1 USD = rate
DEFAULT_EXCHANGE_RATES: Dict[str, float] = {
    "jpy": 150.00,
    "eur": 0.85,
    "gbp": 0.80,
}

CURRENCY_SYMBOLS = {
    "USD": "$",
    "JPY": "¥",
    "EUR": "€",
    "GBP": "£",
}

EURO_LANGUAGES = ("de", "fr", "es", "it")


def is_valid_currency(currency: Optional[str]) -> bool:
    return bool(currency) and currency.upper() in SUPPORTED_CURRENCIES


def convert_price(usd_cents: int, currency: str, rates: Optional[Dict[str, float]] = None) -> int:
    """Convert a USD-cent price; raises ValueError for an unknown currency."""
    currency = currency.upper()
    if currency == "USD":
        return usd_cents

    rate = {**DEFAULT_EXCHANGE_RATES, **(rates or {})}.get(currency.lower())
    if not rate:
        raise ValueError(f"Exchange rate not found for currency: {currency}")
    return round(usd_cents * rate)


def format_price(amount: int, currency: str) -> str:
    """¥1,500 / $29.00 / €24.65 / £23.20"""
    currency = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(currency, "")
    if currency == "JPY":
        return f"{symbol}{amount:,}"
    return f"{symbol}{amount / 100:,.2f}"


def currency_from_locale(locale: Optional[str]) -> str:
    if not locale:
        return DEFAULT_CURRENCY

    normalized = locale.replace("_", "-")
    if normalized.lower().startswith("en-gb"):
        return "GBP"
    if normalized.startswith("ja"):
        return "JPY"
    if normalized.startswith(EURO_LANGUAGES):
        return "EUR"
    return DEFAULT_CURRENCY


def detect_currency(
    explicit: Optional[str] = None,
    user_locale: Optional[str] = None,
    accept_language: Optional[str] = None,
) -> str:
    """Explicit currency, then the user's locale, then the first Accept-Language entry."""
    if is_valid_currency(explicit):
        return explicit.upper()
    if user_locale:
        return currency_from_locale(user_locale)
    if accept_language:
        first = accept_language.split(",")[0].split(";")[0].strip()
        return currency_from_locale(first)
    return DEFAULT_CURRENCY


def get_stripe_price_id(plan: Any, currency: str) -> Optional[str]:
    price_ids = getattr(plan, "stripe_price_ids", None) or {}
    return price_ids.get(currency.lower()) or None


def plan_price(plan: Any, currency: str) -> Dict[str, Any]:
    """Price block for the public plan list."""
    amount = convert_price(plan.base_price_usd or 0, currency, plan.exchange_rates or None)
    return {
        "currency": currency,
        "amount": amount,
        "formatted": format_price(amount, currency),
    }
