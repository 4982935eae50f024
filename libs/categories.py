"""Category suggestion for ledger entries.

Two sources of evidence, in strict priority order:

1. **Habit memory** – a past transaction with the same label (case-insensitive,
   trimmed). Explicit user history always wins.
2. **Keyword dictionary** – French vocabulary mapped to canonical category
   names, matched as a case-insensitive substring of the label.

Nothing here touches the network: callers pre-fetch categories and history.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from libs.models import CategoryRef, CategoryType, Direction, PastTransaction

logger = logging.getLogger(__name__)

__all__ = [
    "KEYWORD_MAP",
    "FALLBACK_CATEGORY",
    "suggest_category",
    "resolve_category_id",
    "detect_provider_category",
]

FALLBACK_CATEGORY = "Divers"

# Порядок важен: первый совпавший ключ побеждает.
KEYWORD_MAP: dict[str, str] = {
    # Alimentation
    "marché": "Alimentation", "carrefour": "Alimentation", "supermarché": "Alimentation",
    "bouffe": "Alimentation", "nourriture": "Alimentation", "vivres": "Alimentation",
    "boulangerie": "Alimentation", "pain": "Alimentation", "légumes": "Alimentation",
    # Transport
    "taxi": "Transport", "moto": "Transport", "bus": "Transport", "essence": "Transport",
    "carburant": "Transport", "péage": "Transport", "uber": "Transport", "yango": "Transport",
    # Restaurant
    "restaurant": "Restaurant", "resto": "Restaurant", "brasserie": "Restaurant",
    "snack": "Restaurant", "repas": "Restaurant", "déjeuner": "Restaurant",
    # Loyer
    "loyer": "Loyer", "appartement": "Loyer", "maison": "Loyer",
    # Électricité
    "seeg": "Électricité", "eneo": "Électricité", "électricité": "Électricité",
    "courant": "Électricité",
    # Telecom
    "forfait": "Telecom", "bundle": "Telecom", "libertis": "Telecom",
    # Santé
    "pharmacie": "Santé", "médicament": "Santé", "hôpital": "Santé",
    "clinique": "Santé", "docteur": "Santé", "médecin": "Santé",
    # Éducation
    "école": "Éducation", "scolarité": "Éducation", "formation": "Éducation",
    "livres": "Éducation", "cours": "Éducation",
    # Loisirs
    "cinéma": "Loisirs", "film": "Loisirs", "sortie": "Loisirs", "fête": "Loisirs",
    "concert": "Loisirs", "match": "Loisirs",
    # Shopping
    "vêtements": "Shopping", "habits": "Shopping", "chaussures": "Shopping",
    "boutique": "Shopping", "achat": "Shopping",
    # Épargne
    "épargne": "Épargne", "économies": "Épargne",
    # Investissement
    "investissement": "Investissement", "placement": "Investissement",
    # Salaire
    "salaire": "Salaire", "paie": "Salaire", "virement": "Salaire",
    # Freelance
    "freelance": "Freelance", "mission": "Freelance", "prestation": "Freelance",
}

# Провайдеры из SMS → категория (подсказка парсера)
_PROVIDER_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("seeg",), "Électricité"),
    (("gabon telecom", "libertis", "moov", "airtel"), "Telecom"),
    (("canal+", "canal plus", "dstv"), "Loisirs"),
    (("pharmacie", "hopital", "hôpital", "clinique"), "Santé"),
    (("restaurant", "food"), "Restaurant"),
    (("transport", "taxi"), "Transport"),
]


def _candidates(categories: Iterable[CategoryRef], direction: Direction) -> list[CategoryRef]:
    wanted = CategoryType.INCOME if direction == Direction.INCOME else CategoryType.EXPENSE
    return [c for c in categories if c.type == wanted]


def _by_name(candidates: Sequence[CategoryRef], name: str) -> Optional[CategoryRef]:
    lowered = name.casefold()
    return next((c for c in candidates if c.name.casefold() == lowered), None)


def suggest_category(
    label: str,
    categories: Sequence[CategoryRef],
    past_transactions: Sequence[PastTransaction],
    direction: Direction,
) -> Optional[str]:
    """Return the id of the most likely category for *label*, or ``None``."""
    needle = label.strip().casefold()
    if not needle or not categories:
        return None

    candidates = _candidates(categories, direction)
    candidate_ids = {c.id for c in candidates}

    # 1. Habit memory
    past = next(
        (tx for tx in past_transactions if tx.label.strip().casefold() == needle),
        None,
    )
    if past is not None and past.category_id in candidate_ids:
        logger.debug("Category for %r from habit memory: %s", label, past.category_id)
        return past.category_id

    # 2. Keyword dictionary
    for keyword, category_name in KEYWORD_MAP.items():
        if keyword in needle:
            matched = _by_name(candidates, category_name)
            if matched is not None:
                logger.debug("Category for %r from keyword %r: %s", label, keyword, matched.id)
                return matched.id

    return None


def detect_provider_category(name: str, details: Optional[str] = None) -> str:
    """Category hint from a merchant / biller name found in an SMS."""
    lowered = name.casefold()
    category = FALLBACK_CATEGORY
    for needles, hint in _PROVIDER_HINTS:
        if any(n in lowered for n in needles):
            category = hint
            break

    # SEEG продаёт и свет, и воду – уточняем по деталям счёта
    if "seeg" in lowered and details:
        lowered_details = details.casefold()
        if "kwh" in lowered_details:
            category = "Électricité"
        if "eau" in lowered_details or "water" in lowered_details:
            category = "Logement"
    return category


def resolve_category_id(
    label: str,
    categories: Sequence[CategoryRef],
    past_transactions: Sequence[PastTransaction],
    direction: Direction,
    hint: Optional[str] = None,
) -> Optional[str]:
    """Suggestion engine first, then the parser hint, then the fallback category."""
    suggested = suggest_category(label, categories, past_transactions, direction)
    if suggested is not None:
        return suggested

    candidates = _candidates(categories, direction)
    for name in (hint, FALLBACK_CATEGORY):
        if name and (matched := _by_name(candidates, name)) is not None:
            return matched.id
    return None
