"""/v1/subscription - create, list, inspect, and cancel recurring payments"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from autopay_engine.api.dependencies import get_engine, get_request_id, to_http_exception
from autopay_engine.api.v1.schemas import (
    ExecutionSchema,
    MessageResponse,
    SubscriptionCreateRequest,
    SubscriptionCreateResponse,
    SubscriptionDetailResponse,
    SubscriptionListResponse,
    SubscriptionSchema,
)
from autopay_engine.domain.exceptions import DomainException, ValidationError
from autopay_engine.domain.models import ExecutionRecord, Subscription
from autopay_engine.domain.step_codec import steps_to_list
from autopay_engine.domain.tokens import token_address
from autopay_engine.infrastructure.database.repositories import SubscriptionRepository
from autopay_engine.infrastructure.database.session import get_db
from autopay_engine.services.engine import Engine
from autopay_engine.services.subscriptions import (
    NewSubscription,
    cancel_subscription,
    create_subscription,
    list_with_latest,
    subscription_details,
)
from autopay_engine.utils.amounts import format_amount

router = APIRouter()


def execution_to_schema(record: ExecutionRecord) -> ExecutionSchema:
    return ExecutionSchema(
        id=record.id,
        executed_at=record.executed_at.isoformat(),
        scheduled_for=record.scheduled_for.isoformat(),
        status=record.status,
        output_amount=format_amount(record.output_amount) if record.output_amount is not None else None,
        gas_cost_usd=str(record.gas_cost_usd),
        steps=steps_to_list(record.steps),
        top_up_steps=steps_to_list(record.top_up_steps),
        fallback_used=record.fallback_used,
        retry_count=record.retry_count,
        failure_reason=record.failure_reason,
        error=record.error,
    )


def subscription_fields(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "name": subscription.name,
        "description": subscription.description,
        "owner_address": subscription.owner,
        "token_symbol": subscription.token_symbol,
        "token_address": subscription.token_address,
        "amount": format_amount(subscription.amount),
        "receiver_address": subscription.receiver,
        "from_chain": subscription.from_chain,
        "to_chain": subscription.to_chain,
        "frequency": subscription.cadence,
        "next_run_date": subscription.next_run_date.isoformat(),
        "is_active": subscription.is_active,
        "consecutive_failures": subscription.consecutive_failures,
        "pending_attempts": subscription.pending_attempts,
    }


def subscription_to_schema(subscription: Subscription, latest: Optional[ExecutionRecord] = None) -> SubscriptionSchema:
    return SubscriptionSchema(
        **subscription_fields(subscription),
        latest_execution=execution_to_schema(latest) if latest else None,
    )


@router.post("/subscription/create", response_model=SubscriptionCreateResponse)
def create(
    request_body: SubscriptionCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """
    Create a recurring payment.

    The first run is scheduled one cadence from now. A token address is
    resolved from the well-known token table when the caller omits it.
    """
    request_id = get_request_id(request)
    try:
        address = request_body.token_address or token_address(request_body.from_chain, request_body.token_symbol)
        if not address:
            raise ValidationError(
                f"tokenAddress is required for {request_body.token_symbol} on {request_body.from_chain}"
            )

        subscription = create_subscription(
            SubscriptionRepository(db),
            NewSubscription(
                name=request_body.name,
                description=request_body.description,
                owner=request_body.owner_address,
                token_symbol=request_body.token_symbol,
                token_address=address,
                amount=request_body.amount,
                receiver=request_body.receiver_address,
                from_chain=request_body.from_chain,
                to_chain=request_body.to_chain,
                cadence=request_body.frequency,
            ),
            engine.supported_chains,
            engine.clock(),
        )
        db.commit()

    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    logging.info(
        "Subscription created",
        extra={"request_id": request_id, "subscription_id": subscription.id, "cadence": subscription.cadence},
    )
    return SubscriptionCreateResponse(id=subscription.id, message="Subscription created successfully")


@router.get("/subscription/list", response_model=SubscriptionListResponse)
def list_subscriptions(db: Session = Depends(get_db)):
    """All subscriptions, newest first, each with its latest execution"""
    entries = list_with_latest(SubscriptionRepository(db))
    return SubscriptionListResponse(
        subscriptions=[subscription_to_schema(subscription, latest) for subscription, latest in entries]
    )


@router.get("/subscription/{subscription_id}", response_model=SubscriptionDetailResponse)
def get_subscription(subscription_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        subscription, executions = subscription_details(SubscriptionRepository(db), subscription_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return SubscriptionDetailResponse(
        **subscription_fields(subscription),
        latest_execution=execution_to_schema(executions[0]) if executions else None,
        executions=[execution_to_schema(record) for record in executions],
    )


@router.delete("/subscription/{subscription_id}", response_model=MessageResponse)
def cancel(subscription_id: str, request: Request, db: Session = Depends(get_db)):
    """Deactivate a subscription. A run already in flight stops before its next step."""
    request_id = get_request_id(request)
    try:
        cancel_subscription(SubscriptionRepository(db), subscription_id)
        db.commit()
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    logging.info("Subscription cancelled", extra={"request_id": request_id, "subscription_id": subscription_id})
    return MessageResponse(message="Subscription cancelled successfully")
