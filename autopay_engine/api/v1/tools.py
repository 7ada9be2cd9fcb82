"""/mcp - tool manifest and tool calls for assistant clients"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from autopay_engine.api.dependencies import get_engine, get_request_id
from autopay_engine.api.v1.schemas import ToolCallRequest, ToolCallResponse
from autopay_engine.infrastructure.database.session import get_db
from autopay_engine.services.engine import Engine
from autopay_engine.tools.registry import TOOLS, ToolContext, UnknownToolError, call_tool, manifest

router = APIRouter()


@router.get("/manifest")
def get_manifest():
    return manifest()


@router.get("/health")
def tools_health():
    return {"status": "ok", "tools": len(TOOLS)}


@router.post("/call", response_model=ToolCallResponse, response_model_exclude_none=True)
async def call(
    request_body: ToolCallRequest,
    request: Request,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """Run one tool. Domain failures return 200 with isError set; unknown tools are a 404."""
    request_id = get_request_id(request)
    try:
        result = await call_tool(
            request_body.tool_name,
            request_body.arguments,
            ToolContext(engine=engine, db=db, now=engine.clock()),
        )
    except UnknownToolError:
        raise HTTPException(status_code=404, detail=f"Tool '{request_body.tool_name}' not found")
    except Exception as e:
        await run_in_threadpool(db.rollback)
        logging.error(f"Unexpected tool error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    logging.info(
        "Tool called",
        extra={"request_id": request_id, "tool": request_body.tool_name, "is_error": result.get("isError", False)},
    )
    return ToolCallResponse.model_validate(result)
