"""/v1/route - route quotes with fallbacks, transaction dry-runs, and the short-lived quote cache"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from autopay_engine.api.dependencies import get_engine, get_request_id, to_http_exception
from autopay_engine.api.v1.schemas import (
    RouteQuoteRequest,
    RouteQuoteResponse,
    RouteSimulateRequest,
    RouteSimulateResponse,
)
from autopay_engine.domain.exceptions import DomainException
from autopay_engine.infrastructure.database.repositories import RouteCacheRepository
from autopay_engine.infrastructure.database.session import get_db
from autopay_engine.services.engine import Engine
from autopay_engine.services.quotes import RouteQuote

router = APIRouter()


def _cache_quote(db: Session, quote: RouteQuote, now: datetime) -> None:
    try:
        RouteCacheRepository(db).upsert(quote.key, quote.data, now)
        db.commit()
    except Exception:
        db.rollback()
        raise


@router.post("/route/quote", response_model=RouteQuoteResponse)
async def quote_route(
    request_body: RouteQuoteRequest,
    request: Request,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """
    Quote the best route plus up to three fallbacks.

    Flow:
    1. Plan primary and fallback candidates across venues
    2. Encode the primary steps into an unsigned transaction bundle
    3. Upsert the quote cache under fromChain-toChain-tokenIn-amountIn
    """
    request_id = get_request_id(request)
    try:
        quote = await engine.quotes.quote(
            request_body.from_chain,
            request_body.to_chain,
            request_body.token_in,
            request_body.token_out,
            request_body.amount_in,
            request_body.receiver_address,
        )
        await run_in_threadpool(_cache_quote, db, quote, engine.clock())

    except DomainException as e:
        raise to_http_exception(e, request_id)

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return RouteQuoteResponse.model_validate(quote.data)


@router.post("/route/simulate", response_model=RouteSimulateResponse, response_model_exclude_none=True)
async def simulate_route(
    request_body: RouteSimulateRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    """Dry-run one raw transaction. A revert is a 200 with success false."""
    request_id = get_request_id(request)
    try:
        result = await engine.inspector.simulate(
            request_body.from_chain,
            request_body.to_address,
            data=request_body.data,
            value=request_body.value,
            sender=request_body.from_address,
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return RouteSimulateResponse(
        success=result.success,
        gas_used=result.gas_used,
        tx_hash=result.tx_hash,
        revert_reason=result.revert_reason,
    )


@router.get("/route/cache/{route_key}", response_model=RouteQuoteResponse)
def cached_route(route_key: str, db: Session = Depends(get_db), engine: Engine = Depends(get_engine)):
    """Last quote for a key; 404 when it never existed or has expired"""
    data = RouteCacheRepository(db).get_fresh(route_key, engine.clock())
    if data is None:
        raise HTTPException(status_code=404, detail="Route not cached or expired")
    return RouteQuoteResponse.model_validate(data)
