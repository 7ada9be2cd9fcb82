"""/v1/risk - pre-execution risk assessment and address profiles"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from autopay_engine.api.dependencies import get_engine, get_request_id, to_http_exception
from autopay_engine.api.v1.schemas import (
    AddressAnalyzeRequest,
    AddressAnalyzeResponse,
    AddressRiskFactors,
    RiskScanRequest,
    RiskScanResponse,
    TokenInfoSchema,
)
from autopay_engine.domain.exceptions import DomainException
from autopay_engine.infrastructure.observability.metrics import risk_scan_counter
from autopay_engine.services.engine import Engine
from autopay_engine.utils.amounts import format_amount

router = APIRouter()


@router.post("/risk/scan", response_model=RiskScanResponse)
async def scan(
    request_body: RiskScanRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    request_id = get_request_id(request)
    try:
        assessment = await engine.risk_scanner.scan(
            request_body.chain,
            request_body.token_address,
            request_body.receiver_address,
            request_body.amount,
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    risk_scan_counter.labels(level=assessment.risk_level.value).inc()
    logging.info(
        "Risk scan completed",
        extra={"request_id": request_id, "risk_level": assessment.risk_level.value, "flags": list(assessment.flags)},
    )
    return RiskScanResponse(
        risk_level=assessment.risk_level.value,
        flags=list(assessment.flags),
        recommendations=list(assessment.recommendations),
        confidence=assessment.confidence,
    )


@router.post("/risk/analyze-address", response_model=AddressAnalyzeResponse)
async def analyze_address(
    request_body: AddressAnalyzeRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    request_id = get_request_id(request)
    try:
        profile = await engine.inspector.analyze_address(request_body.chain, request_body.address)
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    token = profile.token
    return AddressAnalyzeResponse(
        address=profile.address,
        chain=profile.chain,
        is_contract=profile.is_contract,
        balance=format_amount(profile.balance),
        balance_usd=str(profile.balance_usd),
        token_info=TokenInfoSchema(name=token.name, symbol=token.symbol, decimals=token.decimals) if token else None,
        risk_factors=AddressRiskFactors(
            is_new_address=profile.is_new_address,
            has_activity=profile.has_activity,
            is_token=profile.is_token,
        ),
    )
