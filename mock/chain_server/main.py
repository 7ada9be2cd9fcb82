from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from autopay_engine.domain.exceptions import ChainUnavailableError
from autopay_engine.domain.ports import TxPayload
from autopay_engine.infrastructure.clients.simulated_chain import SimulatedChainAdapter


class SimulateBody(BaseModel):
    sender: str = Field(..., alias="from")
    to: str
    data: str
    value: str = "0"


def create_app(adapter: Optional[SimulatedChainAdapter] = None) -> FastAPI:
    app = FastAPI(title="Mock Chain Gateway", version="1.0.0")
    chain = adapter or SimulatedChainAdapter.demo()
    app.state.chain = chain

    @app.exception_handler(ChainUnavailableError)
    async def unavailable(request, exc):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/health")
    def health(): return {"status": "ok"}

    @app.get("/chains/{name}/balance/{address}")
    async def balance(name: str, address: str):
        return {"balance": str(await chain.get_native_balance(name, address))}

    @app.get("/chains/{name}/price")
    async def price(name: str):
        return {"priceUSD": str(await chain.get_native_price_usd(name))}

    @app.get("/chains/{name}/gas-price")
    async def gas_price(name: str):
        return {"gwei": str(await chain.get_gas_price_gwei(name))}

    @app.get("/chains/{name}/code/{address}")
    async def code(name: str, address: str):
        return {"isContract": await chain.is_contract(name, address)}

    @app.get("/chains/{name}/tokens/{address}")
    async def token(name: str, address: str):
        metadata = await chain.get_token_metadata(name, address)
        if metadata is None:
            raise HTTPException(status_code=404, detail="token not found")
        return {"name": metadata.name, "symbol": metadata.symbol, "decimals": metadata.decimals}

    @app.post("/chains/{name}/simulate")
    async def simulate(name: str, body: SimulateBody):
        payload = TxPayload(chain=name, to_address=body.to, data=body.data, value=Decimal(body.value))
        result = await chain.simulate_transaction(body.sender, payload)
        return {
            "success": result.success,
            "gasUsed": result.gas_used,
            "txHash": result.tx_hash,
            "revertReason": result.revert_reason,
        }

    return app


app = create_app()
