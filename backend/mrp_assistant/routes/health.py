"""
Health check endpoints.
"""
from fastapi import APIRouter

from mrp_assistant.core.logging import get_logger
from mrp_assistant.services.ai.orchestration import get_tool_catalog
from mrp_assistant.services.query.enums import get_enum_normalizer

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/assistant")
async def assistant_health():
    """
    Readiness of the assistant's local resources.

    Returns:
        - tools: number of registered tools
        - enum_synonyms_loaded: whether the synonym table was loaded
          (without it status/type values pass through unchanged)
    """
    normalizer = get_enum_normalizer()
    synonyms_loaded = normalizer.initialize()
    return {
        "status": "ok" if synonyms_loaded else "degraded",
        "tools": len(get_tool_catalog()),
        "enum_synonyms_loaded": synonyms_loaded,
        "enum_fields": sorted(normalizer.tables),
    }
