"""
Merchant Extraction

Pulls a merchant/brand token out of a free-text expense concept so a
correction can become a reusable rule:

    "Mercadona compra semanal" -> "mercadona"
    "Vaper El Estanco"         -> "vaper"
    "Netflix suscripción"      -> "netflix"

DESIGN DECISION: Known merchants are matched first, by priority, so
"Uber Eats pedido" resolves to "uber eats" and not "uber". Anything else
falls back to the first significant word, which is right often enough for
personal rules and costs nothing.

Not finding a merchant is a normal outcome, never an error.
"""

import re
from typing import Optional

import structlog


logger = structlog.get_logger(__name__)


# (pattern, merchant, priority) - higher priority is checked first
_KNOWN_MERCHANTS: list[tuple[str, str, int]] = [
    # Supermarkets
    (r"\bmercadona\b", "mercadona", 10),
    (r"\bcarrefour\b", "carrefour", 10),
    (r"\blidl\b", "lidl", 10),
    (r"\baldi\b", "aldi", 10),
    (r"\bdía\b", "día", 10),
    (r"\beroski\b", "eroski", 10),
    (r"\balcampo\b", "alcampo", 10),
    # Streaming
    (r"\bnetflix\b", "netflix", 9),
    (r"\bspotify\b", "spotify", 9),
    (r"\bamazon\s*prime\b", "amazon prime", 9),
    (r"\byoutube\s*premium\b", "youtube premium", 9),
    (r"\bdisney\b", "disney", 9),
    (r"\bhbo\b", "hbo", 9),
    # Food delivery, before the generic "uber"
    (r"\buber\s*eats\b", "uber eats", 9),
    (r"\bjust\s*eat\b", "just eat", 9),
    (r"\bglovo\b", "glovo", 9),
    # Transport
    (r"\buber\b", "uber", 8),
    (r"\bcabify\b", "cabify", 8),
    (r"\brenfe\b", "renfe", 8),
    (r"\bcercanías\b", "renfe", 8),
    # Vices
    (r"\bvaper\b", "vaper", 7),
    (r"\bestanco\b", "estanco", 7),
    (r"\btabaco\b", "tabaco", 7),
    # Pharmacy
    (r"\bfarmacia\b", "farmacia", 7),
    # Books / education
    (r"\bcasa\s*del\s*libro\b", "casa del libro", 6),
    (r"\bfnac\b", "fnac", 6),
    (r"\budemy\b", "udemy", 6),
    (r"\bcoursera\b", "coursera", 6),
    # Gyms
    (r"\bgimnasio\b", "gimnasio", 6),
    (r"\bgym\b", "gimnasio", 6),
    # E-commerce
    (r"\bamazon\b", "amazon", 5),
    (r"\baliexpress\b", "aliexpress", 5),
]

# Stable sort keeps declaration order within a priority tier
KNOWN_MERCHANT_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(pattern, re.IGNORECASE), name)
    for pattern, name, _ in sorted(_KNOWN_MERCHANTS, key=lambda m: -m[2])
]

_CURRENCY_SYMBOLS = re.compile(r"[€$£¥]")
_WHITESPACE = re.compile(r"\s+")

MIN_SIGNIFICANT_LENGTH = 4
MIN_SHORT_LENGTH = 3


def normalize_concept(concept: str) -> str:
    """Lowercase, drop currency symbols, collapse whitespace."""
    text = _CURRENCY_SYMBOLS.sub("", (concept or "").lower().strip())
    return _WHITESPACE.sub(" ", text).strip()


def _match_known(normalized: str) -> Optional[str]:
    for pattern, name in KNOWN_MERCHANT_PATTERNS:
        if pattern.search(normalized):
            return name
    return None


def extract_merchant(concept: str) -> Optional[str]:
    """
    Extract the merchant token from an expense concept.

    Strategy:
    1. Known merchant patterns, highest priority first
    2. First word with at least 4 characters
    3. First word if it has at least 3 characters

    Returns None when nothing meaningful can be extracted.
    """
    normalized = normalize_concept(concept)
    if not normalized:
        return None

    known = _match_known(normalized)
    if known:
        logger.debug("merchant_extracted", concept=concept, merchant=known, method="pattern")
        return known

    words = normalized.split(" ")

    for word in words:
        if len(word) >= MIN_SIGNIFICANT_LENGTH:
            logger.debug("merchant_extracted", concept=concept, merchant=word, method="first_word")
            return word

    if len(words[0]) >= MIN_SHORT_LENGTH:
        logger.debug(
            "merchant_extracted", concept=concept, merchant=words[0], method="first_word_short"
        )
        return words[0]

    logger.debug("merchant_not_found", concept=concept)
    return None


def extract_all_merchants(concept: str) -> list[str]:
    """
    Every known merchant mentioned in the concept.

    "Mercadona y Lidl" -> ["mercadona", "lidl"]. Falls back to the single
    extracted merchant when no known pattern matches.
    """
    normalized = normalize_concept(concept)
    if not normalized:
        return []

    merchants = []
    for pattern, name in KNOWN_MERCHANT_PATTERNS:
        if pattern.search(normalized) and name not in merchants:
            merchants.append(name)

    if merchants:
        return merchants

    merchant = extract_merchant(concept)
    return [merchant] if merchant else []


def contains_merchant(concept: str, merchant: str) -> bool:
    """Case-insensitive substring check."""
    if not concept or not merchant:
        return False
    return merchant.lower().strip() in concept.lower().strip()


def get_merchant_confidence(concept: str, merchant: Optional[str]) -> float:
    """
    How much to trust an extracted merchant.

    1.0 for a known merchant, then 0.8 / 0.7 / 0.6 by token length
    (>=6, 4-5, shorter). 0.0 when there is no merchant.
    """
    if not merchant:
        return 0.0

    if _match_known(normalize_concept(concept)):
        return 1.0

    if len(merchant) >= 6:
        return 0.8
    if len(merchant) >= 4:
        return 0.7
    return 0.6
