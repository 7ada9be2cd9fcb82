"""Data access layer for subscriptions, execution history, and cached route quotes"""

import asyncio
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy.orm import Session

from autopay_engine.domain.models import ExecutionRecord, RunProgress, Subscription
from autopay_engine.domain.ports import SubscriptionStore
from autopay_engine.domain.step_codec import decode_progress, decode_steps, encode_progress, encode_steps
from autopay_engine.infrastructure.database.models import (
    ExecutionRecordModel,
    RouteCacheEntry,
    SubscriptionModel,
)
from autopay_engine.utils.date_utils import as_utc, utcnow

ROUTE_CACHE_TTL = timedelta(minutes=5)

T = TypeVar("T")


class SubscriptionRepository:
    """Repository for subscriptions and their execution records. Callers commit."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, subscription: Subscription) -> Subscription:
        db_subscription = SubscriptionModel(
            id=subscription.id,
            name=subscription.name,
            description=subscription.description,
            owner=subscription.owner,
            token_symbol=subscription.token_symbol,
            token_address=subscription.token_address,
            amount=str(subscription.amount),
            receiver=subscription.receiver,
            from_chain=subscription.from_chain,
            to_chain=subscription.to_chain,
            cadence=subscription.cadence,
            next_run_date=subscription.next_run_date,
            is_active=subscription.is_active,
            pending_attempts=subscription.pending_attempts,
            retry_not_before=subscription.retry_not_before,
            consecutive_failures=subscription.consecutive_failures,
            schedule_anchor=subscription.schedule_anchor or subscription.next_run_date,
            created_at=subscription.created_at or utcnow(),
        )
        self.db.add(db_subscription)
        self.db.flush()
        return _subscription_to_domain(db_subscription)

    def get(self, subscription_id: str) -> Optional[Subscription]:
        row = self._get_row(subscription_id)
        return _subscription_to_domain(row) if row else None

    def list_subscriptions(self) -> List[Subscription]:
        rows = self.db.query(SubscriptionModel).order_by(SubscriptionModel.created_at.desc()).all()
        return [_subscription_to_domain(row) for row in rows]

    def list_due(self, now: datetime) -> List[Subscription]:
        """Active subscriptions past their run date whose retry gate has opened"""
        rows = (
            self.db.query(SubscriptionModel)
            .filter(SubscriptionModel.is_active.is_(True))
            .filter(SubscriptionModel.next_run_date <= now)
            .order_by(SubscriptionModel.next_run_date.asc())
            .all()
        )
        subscriptions = [_subscription_to_domain(row) for row in rows]
        return [subscription for subscription in subscriptions if subscription.is_due(now)]

    def deactivate(self, subscription_id: str) -> Optional[Subscription]:
        row = self._get_row(subscription_id)
        if row is None:
            return None
        row.is_active = False
        self.db.flush()
        return _subscription_to_domain(row)

    def defer(
        self,
        subscription_id: str,
        attempts: int,
        retry_not_before: datetime,
        progress: Optional[RunProgress] = None,
    ) -> None:
        row = self._get_row(subscription_id)
        if row is None:
            return
        row.pending_attempts = attempts
        row.retry_not_before = retry_not_before
        row.run_progress = encode_progress(progress) if progress is not None else None
        self.db.flush()

    def finalize(
        self,
        subscription_id: str,
        record: ExecutionRecord,
        next_run_date: datetime,
        is_active: bool,
        consecutive_failures: int,
    ) -> None:
        """Write the run's record and move the schedule forward in the same flush"""
        row = self._get_row(subscription_id)
        self.db.add(
            ExecutionRecordModel(
                id=record.id,
                subscription_id=subscription_id,
                executed_at=record.executed_at,
                scheduled_for=record.scheduled_for,
                status=record.status,
                output_amount=str(record.output_amount) if record.output_amount is not None else None,
                gas_cost_usd=str(record.gas_cost_usd),
                steps=encode_steps(record.steps),
                top_up_steps=encode_steps(record.top_up_steps),
                fallback_used=record.fallback_used,
                retry_count=record.retry_count,
                failure_reason=record.failure_reason,
                error=record.error,
            )
        )
        if row is not None:
            row.next_run_date = next_run_date
            row.is_active = row.is_active and is_active
            row.consecutive_failures = consecutive_failures
            row.pending_attempts = 0
            row.retry_not_before = None
            row.run_progress = None
        self.db.flush()

    def list_executions(self, subscription_id: str, limit: int = 10) -> List[ExecutionRecord]:
        """Most recent first"""
        rows = (
            self.db.query(ExecutionRecordModel)
            .filter(ExecutionRecordModel.subscription_id == subscription_id)
            .order_by(ExecutionRecordModel.executed_at.desc())
            .limit(limit)
            .all()
        )
        return [_record_to_domain(row) for row in rows]

    def _get_row(self, subscription_id: str) -> Optional[SubscriptionModel]:
        return self.db.query(SubscriptionModel).filter(SubscriptionModel.id == subscription_id).first()


class SqlSubscriptionStore(SubscriptionStore):
    """
    SubscriptionStore for background execution.

    Each call runs in its own session on a worker thread and commits on
    success, so the event loop never waits on the database and the
    orchestrator never holds a connection across chain calls.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _repository(self) -> Iterator[SubscriptionRepository]:
        db = self._session_factory()
        try:
            yield SubscriptionRepository(db)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _call(self, operation: Callable[[SubscriptionRepository], T]) -> T:
        with self._repository() as repo:
            return operation(repo)

    async def _run(self, operation: Callable[[SubscriptionRepository], T]) -> T:
        return await asyncio.to_thread(self._call, operation)

    async def create(self, subscription: Subscription) -> Subscription:
        return await self._run(lambda repo: repo.create(subscription))

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        return await self._run(lambda repo: repo.get(subscription_id))

    async def list_subscriptions(self) -> List[Subscription]:
        return await self._run(lambda repo: repo.list_subscriptions())

    async def list_due(self, now: datetime) -> List[Subscription]:
        return await self._run(lambda repo: repo.list_due(now))

    async def deactivate(self, subscription_id: str) -> Optional[Subscription]:
        return await self._run(lambda repo: repo.deactivate(subscription_id))

    async def defer(
        self,
        subscription_id: str,
        attempts: int,
        retry_not_before: datetime,
        progress: Optional[RunProgress] = None,
    ) -> None:
        await self._run(lambda repo: repo.defer(subscription_id, attempts, retry_not_before, progress))

    async def finalize(
        self,
        subscription_id: str,
        record: ExecutionRecord,
        next_run_date: datetime,
        is_active: bool,
        consecutive_failures: int,
    ) -> None:
        await self._run(
            lambda repo: repo.finalize(subscription_id, record, next_run_date, is_active, consecutive_failures)
        )

    async def list_executions(self, subscription_id: str, limit: int = 10) -> List[ExecutionRecord]:
        return await self._run(lambda repo: repo.list_executions(subscription_id, limit))


class RouteCacheRepository:
    """Repository for cached route quotes"""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, route_key: str, route_data: Dict[str, Any], now: datetime) -> None:
        entry = self.db.query(RouteCacheEntry).filter(RouteCacheEntry.route_key == route_key).first()
        if entry is None:
            entry = RouteCacheEntry(route_key=route_key)
            self.db.add(entry)
        entry.route_data = route_data
        entry.expires_at = now + ROUTE_CACHE_TTL
        self.db.flush()

    def get_fresh(self, route_key: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Cached quote, or None when missing or expired"""
        entry = self.db.query(RouteCacheEntry).filter(RouteCacheEntry.route_key == route_key).first()
        if entry is None or as_utc(entry.expires_at) <= now:
            return None
        return entry.route_data


def _subscription_to_domain(row: SubscriptionModel) -> Subscription:
    return Subscription(
        id=row.id,
        name=row.name,
        description=row.description,
        owner=row.owner,
        token_symbol=row.token_symbol,
        token_address=row.token_address,
        amount=Decimal(row.amount),
        receiver=row.receiver,
        from_chain=row.from_chain,
        to_chain=row.to_chain,
        cadence=row.cadence,
        next_run_date=as_utc(row.next_run_date),
        is_active=row.is_active,
        pending_attempts=row.pending_attempts or 0,
        retry_not_before=as_utc(row.retry_not_before) if row.retry_not_before else None,
        consecutive_failures=row.consecutive_failures or 0,
        created_at=as_utc(row.created_at) if row.created_at else None,
        schedule_anchor=as_utc(row.schedule_anchor) if row.schedule_anchor else None,
        progress=decode_progress(row.run_progress) if row.run_progress else None,
    )


def _record_to_domain(row: ExecutionRecordModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        subscription_id=row.subscription_id,
        executed_at=as_utc(row.executed_at),
        scheduled_for=as_utc(row.scheduled_for),
        status=row.status,
        output_amount=Decimal(row.output_amount) if row.output_amount is not None else None,
        gas_cost_usd=Decimal(row.gas_cost_usd),
        steps=decode_steps(row.steps),
        fallback_used=row.fallback_used,
        retry_count=row.retry_count,
        top_up_steps=decode_steps(row.top_up_steps),
        failure_reason=row.failure_reason,
        error=row.error,
    )
