"""/v1/gas - gas sufficiency checks, single-transaction gas analysis, and per-chain gas prices"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from autopay_engine.api.dependencies import get_engine, get_request_id, to_http_exception
from autopay_engine.api.v1.schemas import (
    ChainGasPrice,
    GasAnalyzeRequest,
    GasAnalyzeResponse,
    GasEnsureRequest,
    GasEnsureResponse,
    GasEstimateSchema,
    GasPricesResponse,
)
from autopay_engine.domain.exceptions import ChainUnavailableError, DomainException
from autopay_engine.domain.routing import GWEI
from autopay_engine.domain.step_codec import steps_to_list
from autopay_engine.domain.tokens import GAS_UNITS
from autopay_engine.services.engine import Engine
from autopay_engine.utils.amounts import format_amount, quantize_gas_usd

router = APIRouter()


@router.post("/gas/ensure", response_model=GasEnsureResponse, response_model_exclude_none=True)
async def ensure_gas(
    request_body: GasEnsureRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    """Check a wallet's native gas against the estimate plus buffer; plan a top-up when short"""
    request_id = get_request_id(request)
    try:
        plan = await engine.gas_checker.ensure(
            request_body.chain,
            request_body.user_address,
            request_body.estimated_gas_usd,
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return GasEnsureResponse(
        chain=plan.chain,
        needed=plan.needed,
        current_balance_usd=str(plan.current_balance_usd),
        required_usd=str(plan.required_usd),
        top_up_steps=steps_to_list(plan.top_up_steps) if plan.needed else None,
        top_up_input_usd=str(plan.top_up_input_usd) if plan.top_up_input_usd is not None else None,
        funding_chain=plan.funding_chain,
    )


@router.get("/gas/prices", response_model=GasPricesResponse, response_model_exclude_none=True)
async def gas_prices(engine: Engine = Depends(get_engine)):
    """Gas price per supported chain and the USD cost of a plain transfer"""

    async def price_for(chain: str) -> ChainGasPrice:
        try:
            gwei, native_price = await asyncio.gather(
                engine.chain.get_gas_price_gwei(chain),
                engine.chain.get_native_price_usd(chain),
            )
        except ChainUnavailableError as e:
            logging.warning(f"Gas price unavailable for {chain}: {e}")
            return ChainGasPrice(chain=chain, available=False)
        return ChainGasPrice(
            chain=chain,
            available=True,
            gwei=format_amount(gwei),
            transfer_cost_usd=str(quantize_gas_usd(GAS_UNITS["transfer"] * gwei * GWEI * native_price)),
        )

    prices = await asyncio.gather(*(price_for(chain) for chain in engine.supported_chains))
    return GasPricesResponse(prices=list(prices))


@router.post("/gas/analyze", response_model=GasAnalyzeResponse)
async def analyze_gas(
    request_body: GasAnalyzeRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    """Native balance, gas price, and the cost of one transaction of the given type"""
    request_id = get_request_id(request)
    try:
        analysis = await engine.inspector.analyze_gas(
            request_body.chain,
            request_body.user_address,
            request_body.transaction_type,
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return GasAnalyzeResponse(
        chain=analysis.chain,
        transaction_type=analysis.transaction_type,
        balance=format_amount(analysis.balance),
        balance_usd=str(analysis.balance_usd),
        gas_price_gwei=format_amount(analysis.gas_price_gwei),
        estimate=GasEstimateSchema(
            gas_limit=str(analysis.gas_limit),
            gas_cost_native=format_amount(analysis.gas_cost_native),
            gas_cost_usd=str(analysis.gas_cost_usd),
        ),
        sufficient=analysis.sufficient,
    )
