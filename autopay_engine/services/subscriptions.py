"""Subscription lifecycle operations shared by the HTTP routers and the tool surface"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from autopay_engine.domain.exceptions import SubscriptionNotFoundError, ValidationError
from autopay_engine.domain.models import ExecutionRecord, Subscription
from autopay_engine.infrastructure.database.repositories import SubscriptionRepository
from autopay_engine.utils.amounts import parse_amount
from autopay_engine.utils.date_utils import CADENCES, add_cadence

HISTORY_LIMIT = 10


@dataclass(frozen=True)
class NewSubscription:
    name: str
    owner: str
    token_symbol: str
    token_address: str
    amount: str
    receiver: str
    from_chain: str
    to_chain: str
    cadence: str
    description: Optional[str] = None


def create_subscription(
    repo: SubscriptionRepository,
    request: NewSubscription,
    supported_chains: Sequence[str],
    now: datetime,
) -> Subscription:
    """
    Validate and persist a new subscription. The first run is one cadence from now.

    Raises:
        ValidationError: Missing fields, unsupported chain or cadence, bad amount
    """
    for field_name in ("name", "owner", "token_symbol", "token_address", "receiver"):
        if not getattr(request, field_name).strip():
            raise ValidationError(f"{field_name} is required")
    for field_name in ("from_chain", "to_chain"):
        if getattr(request, field_name) not in supported_chains:
            raise ValidationError(f"Unsupported {field_name}: {getattr(request, field_name)}")
    if request.cadence not in CADENCES:
        raise ValidationError(f"frequency must be one of {', '.join(CADENCES)}")
    amount = parse_amount(request.amount)

    return repo.create(
        Subscription(
            id=str(uuid.uuid4()),
            name=request.name.strip(),
            description=request.description,
            owner=request.owner,
            token_symbol=request.token_symbol.upper(),
            token_address=request.token_address,
            amount=amount,
            receiver=request.receiver,
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            cadence=request.cadence,
            next_run_date=add_cadence(now, request.cadence),
            created_at=now,
        )
    )


def cancel_subscription(repo: SubscriptionRepository, subscription_id: str) -> Subscription:
    subscription = repo.deactivate(subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
    return subscription


def list_with_latest(repo: SubscriptionRepository) -> List[Tuple[Subscription, Optional[ExecutionRecord]]]:
    """All subscriptions, newest first, each with its most recent execution"""
    result = []
    for subscription in repo.list_subscriptions():
        latest = repo.list_executions(subscription.id, limit=1)
        result.append((subscription, latest[0] if latest else None))
    return result


def subscription_details(
    repo: SubscriptionRepository, subscription_id: str
) -> Tuple[Subscription, List[ExecutionRecord]]:
    subscription = repo.get(subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
    return subscription, repo.list_executions(subscription_id, limit=HISTORY_LIMIT)
