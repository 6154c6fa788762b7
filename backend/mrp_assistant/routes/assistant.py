"""
Assistant endpoints.

POST /assistant/query  - answer one user query through the tool-calling loop
GET  /assistant/tools  - list the tools advertised to the reasoning engine

The response carries the answer, the per-call tool log and usage figures;
raw store documents never leave the tool layer.
"""
from typing import List

from fastapi import APIRouter, HTTPException

from mrp_assistant.core.logging import get_logger
from mrp_assistant.models.responses import AssistantQueryRequest, ToolInfo
from mrp_assistant.services.ai.orchestration import get_document_store, get_tool_catalog, process_query
from mrp_assistant.services.ai.schema import QueryResponse

logger = get_logger(__name__)

router = APIRouter()


@router.post("/query", response_model=QueryResponse, response_model_by_alias=True)
async def query_assistant(request: AssistantQueryRequest):
    """
    Run one assistant session.

    Provider failures are reported in the body (``success: false``) rather
    than as HTTP errors; only an unconfigured document store is a 503.
    """
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Field 'query' must not be blank")

    try:
        store = get_document_store()
    except RuntimeError as e:
        logger.error("assistant_store_unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Document store not available")

    result = await process_query(
        query,
        credentials=request.credentials,
        history=request.history,
        options=request.options,
        store=store,
    )
    logger.info(
        "assistant_query_completed",
        success=result.success,
        termination=result.termination_reason,
        rounds=result.rounds,
        tools_executed=len(result.executed_tools),
        processing_time_ms=result.processing_time_ms,
    )
    return result


@router.get("/tools", response_model=List[ToolInfo])
async def list_tools():
    """List registered tools with their advertised JSON schemas."""
    catalog = get_tool_catalog()
    return [
        ToolInfo(
            name=name,
            description=catalog.get(name).spec.description,
            mutating=catalog.get(name).mutating,
            parameters=catalog.get(name).spec.parameters,
        )
        for name in catalog.names
    ]
