"""
Category Intent Inference

Maps a search query to the Kakebo categories its results are expected to
belong to ("farmacia" -> survival, "cine" -> culture).

The table is checked in order and the first keyword found in the query
wins. No match means no expectation: callers treat it as neutral, never
as a penalty.
"""

from typing import Optional

from kakebo.models.expense import KakeboCategory


_SURVIVAL = frozenset({KakeboCategory.SURVIVAL})
_OPTIONAL = frozenset({KakeboCategory.OPTIONAL})
_CULTURE = frozenset({KakeboCategory.CULTURE})
_EXTRA = frozenset({KakeboCategory.EXTRA})


QUERY_CATEGORY_KEYWORDS: dict[str, frozenset[KakeboCategory]] = {
    # Survival
    "salud": _SURVIVAL,
    "medicina": _SURVIVAL,
    "medicamento": _SURVIVAL,
    "farmacia": _SURVIVAL,
    "supermercado": _SURVIVAL,
    "mercadona": _SURVIVAL,
    "comida": _SURVIVAL,
    "alimentacion": _SURVIVAL,
    "alimentación": _SURVIVAL,
    "transporte": _SURVIVAL,
    "gasolina": _SURVIVAL,
    "combustible": _SURVIVAL,
    "alquiler": _SURVIVAL,
    "hipoteca": _SURVIVAL,
    "groceries": _SURVIVAL,
    "pharmacy": _SURVIVAL,
    "rent": _SURVIVAL,
    # Optional
    "restaurante": _OPTIONAL,
    "restaurantes": _OPTIONAL,
    "ocio": _OPTIONAL,
    "entretenimiento": _OPTIONAL,
    "vicios": _OPTIONAL,
    "tabaco": _OPTIONAL,
    "alcohol": _OPTIONAL,
    "gimnasio": _OPTIONAL,
    "gym": _OPTIONAL,
    "deporte": _OPTIONAL,
    "suscripcion": _OPTIONAL,
    "suscripción": _OPTIONAL,
    "netflix": _OPTIONAL,
    "spotify": _OPTIONAL,
    "restaurant": _OPTIONAL,
    # Culture
    "cultura": _CULTURE,
    "libros": _CULTURE,
    "libro": _CULTURE,
    "museo": _CULTURE,
    "museos": _CULTURE,
    "cine": _CULTURE,
    "teatro": _CULTURE,
    "concierto": _CULTURE,
    "curso": _CULTURE,
    "cursos": _CULTURE,
    "books": _CULTURE,
    "museum": _CULTURE,
    # Extra
    "extra": _EXTRA,
}


def infer_query_categories(query: str) -> Optional[frozenset[KakeboCategory]]:
    """Expected categories for a query, or None when nothing matches."""
    query_lower = (query or "").lower()
    for keyword, categories in QUERY_CATEGORY_KEYWORDS.items():
        if keyword in query_lower:
            return categories
    return None
