import html
import time
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def new_id() -> str:
    return uuid.uuid4().hex


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def localized(value: Optional[Dict[str, str]], locale: str = "en",
              default: str = "") -> str:
    """Pick the locale's text out of a {en, zh} object, falling back to en."""
    if not value:
        return default
    return value.get(locale) or value.get("en") or default


# ----------------------------
# Display formatting
# ----------------------------
_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£", "cny": "¥", "jpy": "¥"}


def format_price(amount_in_cents: int, currency: str = "usd",
                 locale: str = "en") -> str:
    """
    Format cents as a currency string.

        format_price(1099)              -> "$10.99"
        format_price(1099, "usd", "zh") -> "US$10.99"
        format_price(1099, "eur")       -> "€10.99"
    """
    currency = (currency or "usd").lower()
    value = f"{amount_in_cents / 100:,.2f}"
    symbol = _SYMBOLS.get(currency)
    if symbol is None:
        return f"{value} {currency.upper()}"
    if locale == "zh" and currency == "usd":
        symbol = "US$"
    if amount_in_cents < 0:
        return f"-{symbol}{value[1:]}"
    return f"{symbol}{value}"


def format_amount(amount: int, currency: str) -> str:
    if currency.lower() == "usd":
        return format_price(amount, "usd", "en")
    return f"{amount} {currency.upper()}"


_MONTHS = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
)


def format_date(value: float | datetime | str, locale: str = "en") -> str:
    if isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value)
    else:
        dt = value
    if locale == "zh":
        return f"{dt.year}年{dt.month}月{dt.day}日"
    return f"{_MONTHS[dt.month - 1]} {dt.day}, {dt.year}"


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - len(suffix))] + suffix


def percent_change(current: int | float, previous: int | float) -> float:
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) * 100.0 / previous, 2)


def to_chart_series(daily_sales: List[Dict[str, Any]],
                    locale: str = "en") -> Dict[str, List[Any]]:
    """Turn daily_sales rows into parallel label/value lists for charts."""
    labels, revenue, orders = [], [], []
    for row in daily_sales:
        d = datetime.fromisoformat(row["date"])
        labels.append(f"{d.month}/{d.day}" if locale == "en"
                      else f"{d.month}月{d.day}日")
        revenue.append(round(row["revenue"] / 100, 2))
        orders.append(row["orders"])
    return {"labels": labels, "revenue": revenue, "orders": orders}


def parse_when(value: Optional[str]) -> Optional[float]:
    """ISO date or datetime (naive means UTC) to epoch seconds."""
    if value is None or value == "":
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def placeholder_svg(width: int, height: int, text: str) -> str:
    font_size = round(min(width, height) / 10, 1)
    return (
        f'<svg width="{width}" height="{height}" '
        f'xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="100%" height="100%" fill="#f3f4f6"/>'
        f'<text x="50%" y="50%" font-family="Arial, sans-serif" '
        f'font-size="{font_size}" text-anchor="middle" '
        f'dominant-baseline="middle" fill="#9ca3af">'
        f'{html.escape(text)}</text></svg>'
    )
