"""FCFA amount normalisation.

Carrier SMS write the same quantity in many shapes: ``10300F``,
``20000FCFA``, ``10 000 F CFA``, ``34155 FCFA``, ``310.88F``. Every numeric
field of the parser goes through :func:`find_amount`, so the rules live in one
place.
"""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

__all__ = [
    "NUMBER_RE",
    "CURRENCY_RE",
    "MONEY_RE",
    "find_amount",
    "normalize_amount",
    "parse_ambiguous_decimal",
]

# Цифры с разделителями тысяч (пробел, NBSP, запятая, точка)
NUMBER_RE = r"\d[\d\s\u00a0\u202f.,]*"
# F CFA / FCFA / XAF / просто F, но не начало слова ("Frais")
CURRENCY_RE = r"(?:F\s*CFA|XAF|F)(?![A-Za-z])"
MONEY_RE = rf"{NUMBER_RE}\s*{CURRENCY_RE}"

_AMOUNT_RE = re.compile(rf"(?P<number>{NUMBER_RE}?)\s*{CURRENCY_RE}", re.IGNORECASE)
_SPACES_RE = re.compile(r"[\s\u00a0\u202f]")


def parse_ambiguous_decimal(num_str: str) -> Decimal:
    """
    Преобразует строку с неизвестным форматом числа в Decimal.
    - Пробелы и NBSP всегда разделители тысяч.
    - Несколько точек или запятых – разделители тысяч.
    - Одна запятая с 1–2 цифрами после неё – десятичная ("1,5" → 1.5).
    - Одна точка – десятичная ("310.88").
    """
    cleaned_str = _SPACES_RE.sub("", num_str).strip(".,")
    if not cleaned_str:
        raise ValueError("Input string cannot be empty")

    last_dot_pos = cleaned_str.rfind(".")
    last_comma_pos = cleaned_str.rfind(",")

    if last_dot_pos != -1 and last_comma_pos != -1:
        if last_comma_pos > last_dot_pos:
            # "1.234,56" (европейский)
            final_str = cleaned_str.replace(".", "").replace(",", ".")
        else:
            # "1,234.56" (американский)
            final_str = cleaned_str.replace(",", "")
    elif last_comma_pos != -1:
        decimals = len(cleaned_str) - last_comma_pos - 1
        if cleaned_str.count(",") == 1 and decimals in (1, 2):
            final_str = cleaned_str.replace(",", ".")
        else:
            final_str = cleaned_str.replace(",", "")
    elif cleaned_str.count(".") > 1:
        # "1.234.567" -> "1234567"
        final_str = cleaned_str.replace(".", "")
    else:
        final_str = cleaned_str

    try:
        return Decimal(final_str)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{num_str}' to a number (cleaned: '{final_str}')")


def find_amount(text: str) -> Optional[int]:
    """First ``<digits> <currency>`` quantity of *text*, rounded half-up.

    Returns ``None`` when no digit run precedes a currency marker.
    """
    match = _AMOUNT_RE.search(text)
    if not match:
        return None
    try:
        value = parse_ambiguous_decimal(match["number"])
    except ValueError:
        return None
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_amount(text: str) -> int:
    """Like :func:`find_amount` but returns ``0`` instead of ``None``."""
    return find_amount(text) or 0
