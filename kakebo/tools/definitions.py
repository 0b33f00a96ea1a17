"""
Tool catalogue sent to the language model.

Declarations are plain JSON-schema dicts (lowercase types). The model
client converts them to its provider's format. Names MUST match ToolName.
"""

import copy
from typing import Any

from kakebo.models.tools import ToolName


_CATEGORY_MAPPING = (
    "Mapeo semántico de categorías Kakebo:\n"
    '- "survival": comida, supermercado, vivienda, alquiler, transporte, farmacia\n'
    '- "optional": ocio, restaurantes, bares, cine, ropa, viajes, suscripciones\n'
    '- "culture": educación, cursos, libros, museos, conferencias\n'
    '- "extra": imprevistos, emergencias, regalos, otros'
)

_CATEGORIES = ["survival", "optional", "culture", "extra"]

_MONTH = {
    "type": "string",
    "description": "Mes en formato YYYY-MM. Por defecto el mes actual.",
}


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": ToolName.ANALYZE_SPENDING_PATTERN.value,
        "description": (
            "Analiza patrones de gasto del usuario por categoría y período.\n\n"
            "Úsala cuando pregunte cuánto ha gastado, gastos por categoría, "
            "si está gastando más, o gastos recientes.\n\n"
            + _CATEGORY_MAPPING
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "enum": _CATEGORIES + ["all"],
                    "description": 'Categoría de gasto. Sin categoría explícita: "all".',
                },
                "period": {
                    "type": "string",
                    "enum": [
                        "current_month", "last_month", "last_3_months",
                        "last_6_months", "current_week", "last_week",
                    ],
                    "description": (
                        '"este mes" → current_month, "el mes pasado" → last_month, '
                        '"trimestre" → last_3_months, "semestre" → last_6_months, '
                        '"esta semana" → current_week, "semana pasada" → last_week'
                    ),
                },
                "limit": {
                    "type": "integer",
                    "description": (
                        "Gastos a listar. Por defecto 5, máximo 50. "
                        'Usa 50 si pide "todos los gastos" o "lista completa".'
                    ),
                },
                "semanticFilter": {
                    "type": "string",
                    "description": (
                        "Subcategoría más específica que las 4 categorías Kakebo: "
                        "comida, transporte, salud, vivienda, ocio, educacion, "
                        "suscripciones, vicios. No lo uses para pedir una categoría entera."
                    ),
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.GET_BUDGET_STATUS.value,
        "description": (
            "Estado del presupuesto: gasto real frente a límites por categoría, "
            "proyección a fin de mes y dinero realmente disponible "
            "(ingresos - gastos fijos - ahorro - gastado).\n\n"
            "Úsala para \"¿cuánto me queda?\", \"¿voy bien de presupuesto?\"."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "month": _MONTH,
                "category": {
                    "type": "string",
                    "enum": _CATEGORIES,
                    "description": "Categoría concreta. Mismo mapeo semántico.",
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.DETECT_ANOMALIES.value,
        "description": (
            "Detecta gastos inusuales comparando con el histórico del propio usuario "
            "(importes altos, categorías raras, muchos gastos el mismo día). "
            "Necesita al menos 20 gastos históricos."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "period": {
                    "type": "string",
                    "enum": ["current_month", "last_week", "last_3_days"],
                    "description": "Período a analizar. Por defecto current_month.",
                },
                "sensitivity": {
                    "type": "string",
                    "enum": ["low", "medium", "high"],
                    "description": "low: solo casos extremos, medium: equilibrado, high: más avisos.",
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.PREDICT_MONTHLY_SPENDING.value,
        "description": (
            "Proyecta el gasto total a final de mes según el ritmo actual, "
            "por categoría, con nivel de confianza."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "month": _MONTH,
                "category": {
                    "type": "string",
                    "enum": _CATEGORIES,
                    "description": "Categoría concreta. Mismo mapeo semántico.",
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.GET_SPENDING_TRENDS.value,
        "description": (
            "Evolución del gasto a largo plazo por semanas o meses, con tendencia, "
            "media, pico y mínimo. El mes en curso se proyecta y se marca."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "period": {
                    "type": "string",
                    "enum": ["last_3_months", "last_6_months", "last_year"],
                    "description": "Período histórico. Por defecto last_3_months.",
                },
                "groupBy": {
                    "type": "string",
                    "enum": ["week", "month"],
                    "description": "Agrupación temporal. Por defecto month.",
                },
                "category": {
                    "type": "string",
                    "enum": _CATEGORIES,
                    "description": "Categoría concreta. Mismo mapeo semántico.",
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.SEARCH_EXPENSES.value,
        "description": (
            "Busca gastos con lenguaje natural libre, sin limitarse a las categorías "
            '("vicios", "restaurantes caros", "gimnasio", "último gasto"). '
            "Devuelve los IDs de los gastos encontrados."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": 'Consulta en lenguaje natural. Por defecto "último".',
                },
                "period": {
                    "type": "string",
                    "enum": [
                        "current_month", "last_month", "last_3_months",
                        "last_6_months", "current_week", "last_week", "all",
                    ],
                    "description": "Período de tiempo. Por defecto current_month.",
                },
                "minAmount": {"type": "number", "description": "Importe mínimo en EUR."},
                "maxAmount": {"type": "number", "description": "Importe máximo en EUR."},
                "limit": {
                    "type": "integer",
                    "description": "Resultados máximos (por defecto 20, máximo 50).",
                },
            },
            "required": [],
        },
    },
    {
        "name": ToolName.SUBMIT_SEARCH_FEEDBACK.value,
        "description": (
            "Guarda correcciones del usuario sobre resultados de búsqueda para mejorar "
            'búsquedas futuras ("la insulina NO es un vicio").'
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "La consulta original que el usuario corrige.",
                },
                "correctExpenseIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "IDs de gastos que SÍ pertenecen a la búsqueda.",
                },
                "incorrectExpenseIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "IDs de gastos que NO pertenecen a la búsqueda.",
                },
            },
            "required": ["query"],
        },
    },
]


def get_tool_definitions() -> list[dict[str, Any]]:
    """Fresh copy of the catalogue."""
    return copy.deepcopy(TOOL_DEFINITIONS)
