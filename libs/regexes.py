# libs/regexes.py
"""Single point of truth for **all** regular-expression patterns and the helpers
that convert a Mobile Money SMS into :data:`libs.models.ParsedSms`.

Новая схема = достаточно добавить паттерн в таблицу ниже – *API и
парсер-воркер подхватят автоматически*. Порядок таблицы значим: первое
совпадение побеждает.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from libs.amounts import MONEY_RE, find_amount
from libs.categories import detect_provider_category
from libs.models import (
    BillPayment,
    BulkItem,
    Bundle,
    MerchantPayment,
    ParsedSms,
    TransferIn,
    TransferOut,
)
from libs.sentry import sentry_capture

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------
_FLAGS = re.IGNORECASE | re.VERBOSE

# Общие части
TID_RE = re.compile(r"TID\s*:\s*(?P<tid>[A-Za-z0-9]+)", re.IGNORECASE)
FEES_RE = re.compile(rf"Frais\s*:?\s*(?P<fees>{MONEY_RE})", re.IGNORECASE)
COST_RE = re.compile(rf"Cout\s*:?\s*(?P<cost>{MONEY_RE})", re.IGNORECASE)
BALANCE_RE = re.compile(
    rf"(?:Nouveau\s+)?Solde(?:\s+actuel|\s+disponible)?\s*:?\s*(?P<balance>{MONEY_RE})",
    re.IGNORECASE,
)
REFERENCE_RE = re.compile(
    r"en\s+r[ée]f[ée]rence\s+(?:a|à)\s+(?P<reference>[A-Za-z0-9-]+)", re.IGNORECASE
)
BUNDLE_KEYWORD_RE = re.compile(r"\b(?:BUNDLE|FORFAIT|PASS)\b", re.IGNORECASE)


# --- 1. Envoi d'argent -----------------------------------------------------------
TRANSFER_OUT_RE = re.compile(
    rf"""
    Vous\s+avez\s+envoy[ée]\s+
    (?P<amount>{MONEY_RE})\s+
    (?:au|a|à)\s+
    (?P<number>\+?\d[\d\s]*\d)
    (?:\s+(?!Frais\b)(?P<name>[^.\n]+?))?
    \s*(?:\.|Frais|$)
    """,
    _FLAGS,
)

# --- 2. Réception d'argent -------------------------------------------------------
TRANSFER_IN_RE = re.compile(
    rf"""
    \bRe[çc]u\s+
    (?P<amount>{MONEY_RE})\s+
    (?:du|de)\s+
    (?P<sender>[^\s.]+(?:\s+[^\s.]+)*?)
    \s*(?:\.|$)
    """,
    _FLAGS,
)

# --- 3. Paiement marchand ---------------------------------------------------------
MERCHANT_RE = re.compile(
    rf"""
    Paiement\s+de\s+
    (?P<amount>{MONEY_RE})\s+
    (?P<product>\S+)\s+
    pour\s+ref\s+(?P<reference>\S+)\s+
    de\s+(?P<merchant>.+?)\s+
    a\s+[ée]t[ée]\s+effectu[ée]
    """,
    _FLAGS,
)

# --- 4. Forfait / bundle ----------------------------------------------------------
BUNDLE_RE = re.compile(
    rf"""
    Paiement\s+de\s+
    (?P<amount>{MONEY_RE})
    (?:\s+(?P<product>.+?)\s+pour\s+ref\s+(?P<reference>[A-Za-z0-9-]+))?
    """,
    _FLAGS,
)

# --- 5. Facture -------------------------------------------------------------------
BILL_RE = re.compile(
    rf"""
    Vous\s+avez\s+PAY[EÉ]\s+
    (?P<amount>{MONEY_RE})\s+
    (?:a|à)\s+
    (?P<beneficiary>[^.\n]+?)
    (?=\s+en\s+r[ée]f[ée]rence|\s*\.|\s*$)
    """,
    _FLAGS,
)


# ---------------------------------------------------------------------------
# Field extractors
# ---------------------------------------------------------------------------
def _tid(text: str) -> Optional[str]:
    m = TID_RE.search(text)
    return m["tid"] if m else None


def _balance(text: str) -> Optional[int]:
    m = BALANCE_RE.search(text)
    return find_amount(m["balance"]) if m else None


def _fees(regex: re.Pattern[str], text: str) -> int:
    m = regex.search(text)
    return (find_amount(m.group(1)) or 0) if m else 0


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(value.split()).strip(" .")
    return value or None


# ---------------------------------------------------------------------------
# Helper table: pattern → builder
# ---------------------------------------------------------------------------
Builder = Callable[[re.Match[str], str], Optional[ParsedSms]]


def _make_transfer_out(m: re.Match[str], text: str) -> Optional[ParsedSms]:
    amount = find_amount(m["amount"])
    if amount is None:
        return None
    number = "".join(m["number"].split())
    name = _clean(m["name"])
    recipient = f"{number} {name}" if name else number
    return TransferOut(
        amount=amount,
        fees=_fees(FEES_RE, text),
        balance=_balance(text[m.end():]),
        recipient=recipient,
        tid=_tid(text),
        label=f"Envoi à {name or number}",
        suggested_category="Mobile Money",
    )


def _make_transfer_in(m: re.Match[str], text: str) -> Optional[ParsedSms]:
    amount = find_amount(m["amount"])
    if amount is None:
        return None
    sender = _clean(m["sender"])
    return TransferIn(
        amount=amount,
        balance=_balance(text[m.end():]),
        recipient=sender,
        tid=_tid(text),
        label=f"Reçu de {sender}",
        suggested_category="Mobile Money",
    )


def _make_merchant(m: re.Match[str], text: str) -> Optional[ParsedSms]:
    amount = find_amount(m["amount"])
    if amount is None:
        return None
    merchant = _clean(m["merchant"])
    return MerchantPayment(
        amount=amount,
        fees=_fees(COST_RE, text),
        balance=_balance(text[m.end():]),
        recipient=merchant,
        reference=_clean(m["reference"]),
        tid=_tid(text),
        label=f"Paiement {merchant}",
        suggested_category=detect_provider_category(merchant or ""),
        notes=_clean(m["product"]),
    )


def _make_bundle(m: re.Match[str], text: str) -> Optional[ParsedSms]:
    # "Paiement de" встречается и в других SMS: нужен BUNDLE/FORFAIT или "Cout:"
    if not (BUNDLE_KEYWORD_RE.search(text) or COST_RE.search(text)):
        return None
    amount = find_amount(m["amount"])
    if amount is None:
        return None
    product = _clean(m["product"])
    return Bundle(
        amount=amount,
        fees=_fees(COST_RE, text),
        balance=_balance(text[m.end():]),
        reference=_clean(m["reference"]),
        tid=_tid(text),
        label=f"Forfait {product}" if product else "Forfait",
        suggested_category="Telecom",
        notes=product,
    )


def _make_bill(m: re.Match[str], text: str) -> Optional[ParsedSms]:
    amount = find_amount(m["amount"])
    if amount is None:
        return None
    provider = _clean(m["beneficiary"])
    ref = REFERENCE_RE.search(text)
    reference = ref["reference"] if ref else None

    # Детали счёта между референсом и TID ("Consommation 150 kWh ...")
    details = None
    tid_match = TID_RE.search(text)
    detail_start = ref.end() if ref else m.end()
    if tid_match and tid_match.start() > detail_start:
        details = _clean(text[detail_start:tid_match.start()])

    return BillPayment(
        amount=amount,
        balance=_balance(text[m.end():]),
        recipient=provider,
        reference=reference,
        tid=tid_match["tid"] if tid_match else None,
        label=f"Facture {provider}",
        suggested_category=detect_provider_category(provider or "", details),
        notes=details,
    )


_PATTERNS: list[tuple[re.Pattern[str], Builder]] = [
    (TRANSFER_OUT_RE, _make_transfer_out),
    (TRANSFER_IN_RE, _make_transfer_in),
    (MERCHANT_RE, _make_merchant),  # до BUNDLE: тоже "Paiement de ... Cout:"
    (BUNDLE_RE, _make_bundle),
    (BILL_RE, _make_bill),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_sms(text: str) -> Optional[ParsedSms]:
    """Attempt to recognise *text* using one of the known patterns.

    Returns
    -------
    ParsedSms | None
        * One of the ParsedSms variants if the message matched.
        * `None` – when the message is not a recognised transaction SMS.
    """
    body = text.strip()
    if not body:
        return None

    for pattern, builder in _PATTERNS:
        match = pattern.search(body)
        if match is None:
            continue
        try:
            parsed = builder(match, body)
        except Exception as exc:  # pragma: no cover – safety net
            logger.exception("Failed to build ParsedSms for pattern %s", pattern.pattern)
            sentry_capture(exc, extras={"raw_text": body})
            return None
        if parsed is not None:
            return parsed
    return None


def split_bulk_sms(blob: str) -> list[BulkItem]:
    """Split a pasted blob on blank lines and classify every segment.

    Unrecognised segments are kept (``parsed=None``) so nothing is dropped.
    """
    segments = (s.strip() for s in re.split(r"\n\s*\n", blob))
    return [BulkItem(raw=s, parsed=parse_sms(s)) for s in segments if s]


__all__ = [
    "parse_sms",
    "split_bulk_sms",
]
