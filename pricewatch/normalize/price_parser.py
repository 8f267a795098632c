"""Locale-aware parsing of raw price fragments.

Storefront markup renders the same amount as ``$ 1.299.900``, ``1,299.90`` or
``49,99`` depending on the market. The parser resolves the separator ambiguity
from a currency hint and never raises: unparseable input yields ``amount=None``.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Currencies whose storefronts group thousands with "." and use "," for decimals
THOUSANDS_DOT_CURRENCIES = frozenset({"COP", "CLP", "ARS", "BRL"})

# Symbols that identify a currency on their own. "$" is shared by too many
# markets to mean anything without the hint.
SYMBOL_CURRENCIES = {
    "R$": "BRL",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
}

ISO_CODES = frozenset({
    "ARS", "BRL", "CLP", "COP", "EUR", "GBP", "JPY", "MXN", "PEN", "USD", "UYU",
})

_NUMBER_RE = re.compile(r"\d[\d.,]*")
# A minus right before the number, optionally around a currency marker
_CURRENCY_MARK = r"(?:[A-Z]{1,3}\$|\$|€|£|¥|[A-Z]{3})"
_NEGATIVE_PREFIX_RE = re.compile(rf"^\s*{_CURRENCY_MARK}?\s*[-\u2212]\s*{_CURRENCY_MARK}?\s*$", re.IGNORECASE)
_ISO_RE = re.compile(r"\b([A-Z]{3})\b")
_MACHINE_RE = re.compile(r"^\d+(?:\.\d+)?$")


@dataclass
class ParsedPrice:
    """Normalized amount and currency; amount is None when nothing usable was found."""

    amount: Optional[Decimal]
    currency: Optional[str]


def uses_thousands_dot(currency: Optional[str]) -> bool:
    """Whether the currency conventionally groups thousands with a dot."""
    return bool(currency) and currency.upper() in THOUSANDS_DOT_CURRENCIES


def decimal_separator(currency: Optional[str]) -> str:
    """Decimal separator used when rendering amounts for the currency."""
    return "," if uses_thousands_dot(currency) else "."


def detect_currency(raw_text: str) -> Optional[str]:
    """Detect an explicit currency marker in the raw text."""
    for symbol, code in SYMBOL_CURRENCIES.items():
        if symbol in raw_text:
            return code

    for match in _ISO_RE.finditer(raw_text.upper()):
        if match.group(1) in ISO_CODES:
            return match.group(1)

    return None


def _resolve_separators(number: str, currency: Optional[str]) -> str:
    """Rewrite a digit run with ambiguous separators into a plain decimal string."""
    number = number.strip(".,")
    has_dot = "." in number
    has_comma = "," in number

    if has_dot and has_comma:
        # The separator that appears last is the decimal one
        if number.rfind(",") > number.rfind("."):
            return number.replace(".", "").replace(",", ".")
        return number.replace(",", "")

    if has_dot:
        if uses_thousands_dot(currency) or number.count(".") > 1:
            return number.replace(".", "")
        return number

    if has_comma:
        if number.count(",") > 1:
            return number.replace(",", "")
        if uses_thousands_dot(currency):
            return number.replace(",", ".")
        # "1,299" groups thousands, "49,99" is a decimal comma
        fraction = number.split(",", 1)[1]
        if len(fraction) == 3:
            return number.replace(",", "")
        return number.replace(",", ".")

    return number


def parse_price(raw_text: Any, locale_hint: Optional[str] = None) -> ParsedPrice:
    """
    Parse a raw price fragment into an amount and currency.

    Args:
        raw_text: Text such as "$ 1.299.900", "R$ 49,99" or "USD 1,299.00"
        locale_hint: Currency code used to resolve separators and as the
                     currency when the text carries no explicit marker

    Returns:
        ParsedPrice; amount is None when no digits are found or the value is
        not a finite non-negative number
    """
    hint = locale_hint.upper() if locale_hint else None
    if raw_text is None:
        return ParsedPrice(amount=None, currency=hint)

    text = str(raw_text)
    currency = detect_currency(text) or hint

    match = _NUMBER_RE.search(text)
    if not match:
        return ParsedPrice(amount=None, currency=currency)

    if _NEGATIVE_PREFIX_RE.match(text[:match.start()]):
        logger.debug(f"Negative price ignored: {text!r}")
        return ParsedPrice(amount=None, currency=currency)

    # The hint decides separators for "$"-style prices; an explicit code wins
    cleaned = _resolve_separators(match.group(0), currency)

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        logger.debug(f"Could not parse price from: {text!r}")
        return ParsedPrice(amount=None, currency=currency)

    if not amount.is_finite() or amount < 0:
        return ParsedPrice(amount=None, currency=currency)

    return ParsedPrice(amount=amount, currency=currency)


def parse_machine_amount(value: Any, locale_hint: Optional[str] = None) -> ParsedPrice:
    """
    Parse an amount coming from machine-readable markup (JSON-LD, meta content).

    JSON numbers and plain ``123`` / ``123.45`` strings are taken literally with
    "." as the decimal point; anything else goes through :func:`parse_price`.
    """
    hint = locale_hint.upper() if locale_hint else None

    if isinstance(value, bool):
        return ParsedPrice(amount=None, currency=hint)

    if isinstance(value, (int, float)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return ParsedPrice(amount=None, currency=hint)
        if not amount.is_finite() or amount < 0:
            return ParsedPrice(amount=None, currency=hint)
        return ParsedPrice(amount=amount, currency=hint)

    if isinstance(value, str) and _MACHINE_RE.match(value.strip()):
        return ParsedPrice(amount=Decimal(value.strip()), currency=hint)

    return parse_price(value, hint)
