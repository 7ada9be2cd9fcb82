"""Pydantic schemas for API request/response validation. JSON is camelCase."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Subscriptions


class SubscriptionCreateRequest(CamelModel):
    """Request body for POST /v1/subscription/create"""

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    owner_address: str = Field(..., min_length=1, description="Payer wallet address")
    token_symbol: str = Field(..., min_length=1)
    token_address: Optional[str] = Field(None, description="Resolved from the token table when omitted")
    amount: str = Field(..., min_length=1, description="Decimal string, e.g. '1500.00'")
    receiver_address: str = Field(..., min_length=1)
    from_chain: str = Field(..., min_length=1)
    to_chain: str = Field(..., min_length=1)
    frequency: Literal["daily", "weekly", "monthly"]


class SubscriptionCreateResponse(CamelModel):
    id: str
    message: str


class ExecutionSchema(CamelModel):
    id: str
    executed_at: str
    scheduled_for: str
    status: str
    output_amount: Optional[str] = None
    gas_cost_usd: str = Field(..., alias="gasCostUSD")
    steps: List[Dict[str, Any]]
    top_up_steps: List[Dict[str, Any]]
    fallback_used: bool
    retry_count: int
    failure_reason: Optional[str] = None
    error: Optional[str] = None


class SubscriptionSchema(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_address: str
    token_symbol: str
    token_address: str
    amount: str
    receiver_address: str
    from_chain: str
    to_chain: str
    frequency: str
    next_run_date: str
    is_active: bool
    consecutive_failures: int
    pending_attempts: int
    latest_execution: Optional[ExecutionSchema] = None


class SubscriptionListResponse(CamelModel):
    subscriptions: List[SubscriptionSchema]


class SubscriptionDetailResponse(SubscriptionSchema):
    """Response for GET /v1/subscription/{id}: last 10 executions, newest first"""

    executions: List[ExecutionSchema]


class MessageResponse(CamelModel):
    message: str


# Routing


class RouteQuoteRequest(CamelModel):
    from_chain: str = Field(..., min_length=1)
    to_chain: str = Field(..., min_length=1)
    token_in: str = Field(..., min_length=1)
    token_out: str = Field(..., min_length=1)
    amount_in: str = Field(..., min_length=1)
    receiver_address: str = Field(..., min_length=1)


class RouteRisk(CamelModel):
    slippage: str
    flags: List[str]


class FallbackRoute(CamelModel):
    via: Optional[str]
    est_out: str
    steps: List[Dict[str, Any]]


class BundleTx(CamelModel):
    chain: str
    to: str
    value: str
    tx: str


class RouteQuoteResponse(CamelModel):
    route_key: str
    from_chain: str
    to_chain: str
    token_in: str
    token_out: str
    amount_in: str
    receiver_address: str
    steps: List[Dict[str, Any]]
    expected_output: str
    gas_estimate_usd: str = Field(..., alias="gasEstimateUSD")
    risk: RouteRisk
    fallback_routes: List[FallbackRoute]
    bundle: List[BundleTx]
    quoted_at: str


class RouteSimulateRequest(CamelModel):
    from_chain: str = Field(..., min_length=1)
    to_address: str = Field(..., min_length=1)
    value: str = Field("0", description="Native value as a decimal string")
    data: str = Field("0x", description="0x-prefixed calldata")
    from_address: Optional[str] = Field(None, description="Sender; a fixed simulation address when omitted")


class RouteSimulateResponse(CamelModel):
    success: bool
    gas_used: int
    tx_hash: str
    revert_reason: Optional[str] = None


# Gas


class GasEnsureRequest(CamelModel):
    chain: str = Field(..., min_length=1)
    user_address: str = Field(..., min_length=1)
    estimated_gas_usd: str = Field(..., alias="estimatedGasUSD", min_length=1)


class GasEnsureResponse(CamelModel):
    chain: str
    needed: bool
    current_balance_usd: str = Field(..., alias="currentBalanceUSD")
    required_usd: str = Field(..., alias="requiredUSD")
    top_up_steps: Optional[List[Dict[str, Any]]] = None
    top_up_input_usd: Optional[str] = Field(None, alias="topUpInputUSD")
    funding_chain: Optional[str] = None


class ChainGasPrice(CamelModel):
    chain: str
    available: bool
    gwei: Optional[str] = None
    transfer_cost_usd: Optional[str] = Field(None, alias="transferCostUSD")


class GasPricesResponse(CamelModel):
    prices: List[ChainGasPrice]


class GasAnalyzeRequest(CamelModel):
    chain: str = Field(..., min_length=1)
    user_address: str = Field(..., min_length=1)
    transaction_type: str = Field("transfer", description="transfer | approve | swap | bridge")


class GasEstimateSchema(CamelModel):
    gas_limit: str
    gas_cost_native: str
    gas_cost_usd: str = Field(..., alias="gasCostUSD")


class GasAnalyzeResponse(CamelModel):
    chain: str
    transaction_type: str
    balance: str
    balance_usd: str = Field(..., alias="balanceUSD")
    gas_price_gwei: str
    estimate: GasEstimateSchema
    sufficient: bool


# Risk


class RiskScanRequest(CamelModel):
    token_address: str = Field(..., min_length=1)
    receiver_address: str = Field(..., min_length=1)
    chain: str = Field(..., min_length=1)
    amount: str = Field(..., min_length=1)


class RiskScanResponse(CamelModel):
    risk_level: Literal["low", "medium", "high"]
    flags: List[str]
    recommendations: List[str]
    confidence: float


class AddressAnalyzeRequest(CamelModel):
    address: str = Field(..., min_length=1)
    chain: str = Field(..., min_length=1)


class TokenInfoSchema(CamelModel):
    name: str
    symbol: str
    decimals: int


class AddressRiskFactors(CamelModel):
    is_new_address: bool
    has_activity: bool
    is_token: bool


class AddressAnalyzeResponse(CamelModel):
    address: str
    chain: str
    is_contract: bool
    balance: str
    balance_usd: str = Field(..., alias="balanceUSD")
    token_info: Optional[TokenInfoSchema] = None
    risk_factors: AddressRiskFactors


# Tools


class ToolCallRequest(CamelModel):
    tool_name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolContent(CamelModel):
    type: Literal["text"] = "text"
    text: str


class ToolCallResponse(CamelModel):
    content: List[ToolContent]
    is_error: Optional[bool] = None
