"""
Currency Parser.

Reads provider price fields (numbers, numeric strings, or free-form price
strings) into Decimal amounts plus an ISO-4217 code. No conversion: prices stay
in the currency the provider quoted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class PriceQuote:
    """Result of parsing one price field."""

    minimum: Decimal | None = None
    maximum: Decimal | None = None
    currency: str = ""
    is_free: bool = False


class CurrencyParser:
    """
    Parse price strings and identify currency.

    Example:
        >>> CurrencyParser.parse_price_string("$20-30")
        PriceQuote(minimum=Decimal('20'), maximum=Decimal('30'), currency='USD', is_free=False)
    """

    # Longest symbols first so "CA$" is not read as "A$" nor "C$" as "$"
    SYMBOL_TO_CODE = {
        "CA$": "CAD",
        "US$": "USD",
        "R$": "BRL",
        "A$": "AUD",
        "C$": "CAD",
        "€": "EUR",
        "£": "GBP",
        "¥": "JPY",
        "₹": "INR",
        "$": "USD",
    }

    CURRENCY_PATTERNS = {
        "EUR": [r"\beur\b", r"\beuros?\b"],
        "GBP": [r"\bgbp\b", r"\bpounds?\b", r"\bsterling\b"],
        "CAD": [r"\bcad\b"],
        "AUD": [r"\baud\b"],
        "USD": [r"\busd\b", r"\bdollars?\b"],
        "JPY": [r"\bjpy\b", r"\byen\b"],
        "CHF": [r"\bchf\b", r"\bfrancs?\b"],
    }

    FREE_INDICATORS = (
        "free",
        "gratis",
        "gratuit",
        "kostenlos",
        "no charge",
        "no cover",
        "complimentary",
    )

    _NUMBER = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:[.,]\d+)?")

    @classmethod
    def parse_price_string(cls, price_str: str | None) -> PriceQuote:
        """
        Parse a price string into a PriceQuote.

        Handles:
        - "£15" -> (15, None, "GBP")
        - "$20-30" -> (20, 30, "USD")
        - "15,50 EUR" -> (15.50, None, "EUR")
        - "Free" -> is_free=True

        Args:
            price_str: Price string to parse

        Returns:
            PriceQuote; amounts are None when nothing numeric was found
        """
        if not price_str or not str(price_str).strip():
            return PriceQuote()

        text = str(price_str).strip()
        currency = cls.detect_currency(text)

        if cls._is_free(text):
            return PriceQuote(minimum=Decimal("0"), maximum=None, currency=currency, is_free=True)

        numbers = cls._extract_numbers(text)
        if not numbers:
            return PriceQuote(currency=currency)
        if len(numbers) == 1:
            return PriceQuote(minimum=numbers[0], currency=currency)
        return PriceQuote(minimum=min(numbers), maximum=max(numbers), currency=currency)

    @classmethod
    def parse_amount(cls, value: Any) -> Decimal | None:
        """
        Coerce a single provider amount to a non-negative Decimal.

        Numbers pass straight through; strings go through parse_price_string.
        Negative or unparseable values yield None.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float, Decimal)):
            try:
                amount = Decimal(str(value))
            except InvalidOperation:
                return None
        else:
            amount = cls.parse_price_string(str(value)).minimum

        if amount is None or not amount.is_finite() or amount < 0:
            return None
        return amount

    @classmethod
    def detect_currency(cls, price_str: str | None) -> str:
        """
        Detect currency from a price string.

        Returns:
            ISO currency code (e.g., "EUR") or empty string if not detected
        """
        if not price_str:
            return ""

        for symbol, code in cls.SYMBOL_TO_CODE.items():
            if symbol in price_str:
                return code

        lowered = price_str.lower()
        for code, patterns in cls.CURRENCY_PATTERNS.items():
            if any(re.search(pattern, lowered) for pattern in patterns):
                return code

        return ""

    @classmethod
    def _is_free(cls, price_str: str) -> bool:
        lowered = price_str.lower()
        return any(indicator in lowered for indicator in cls.FREE_INDICATORS)

    @classmethod
    def _extract_numbers(cls, price_str: str) -> list[Decimal]:
        """
        Extract numeric values.

        "1,250.00" uses thousands separators; a lone "15,50" is a decimal comma.
        """
        numbers = []
        for match in cls._NUMBER.findall(price_str):
            if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?", match):
                normalized = match.replace(",", "")
            else:
                normalized = match.replace(",", ".")
            try:
                numbers.append(Decimal(normalized))
            except InvalidOperation:
                continue
        return numbers
