"""SQLAlchemy ORM models for subscriptions, execution history, and the quote cache"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class SubscriptionModel(Base):
    """Recurring payment. Rows are deactivated, never deleted."""

    __tablename__ = "subscription"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    owner = Column(Text, nullable=False, index=True)
    token_symbol = Column(Text, nullable=False)
    token_address = Column(Text, nullable=False)
    amount = Column(Text, nullable=False)  # exact decimal string
    receiver = Column(Text, nullable=False)
    from_chain = Column(Text, nullable=False)
    to_chain = Column(Text, nullable=False)
    cadence = Column(Text, nullable=False)
    next_run_date = Column(DateTime(timezone=True), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    pending_attempts = Column(Integer, nullable=False, default=0)
    retry_not_before = Column(DateTime(timezone=True), nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    schedule_anchor = Column(DateTime(timezone=True), nullable=True)
    run_progress = Column(JSON, nullable=True)  # settled work of a deferred run
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    executions = relationship("ExecutionRecordModel", back_populates="subscription", cascade="all, delete-orphan")


class ExecutionRecordModel(Base):
    """Outcome of one scheduled run, immutable once written"""

    __tablename__ = "execution_record"

    id = Column(String(36), primary_key=True, default=_new_id)
    subscription_id = Column(String(36), ForeignKey("subscription.id", ondelete="CASCADE"), nullable=False, index=True)
    executed_at = Column(DateTime(timezone=True), nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(Text, nullable=False)
    output_amount = Column(Text, nullable=True)
    gas_cost_usd = Column(Text, nullable=False, default="0")
    steps = Column(JSON, nullable=False)  # versioned step envelope
    top_up_steps = Column(JSON, nullable=False)
    fallback_used = Column(Boolean, nullable=False, default=False)
    retry_count = Column(Integer, nullable=False, default=0)
    failure_reason = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    subscription = relationship("SubscriptionModel", back_populates="executions")


class RouteCacheEntry(Base):
    """Last route quote per key, served until it expires"""

    __tablename__ = "route_cache"

    route_key = Column(Text, primary_key=True)
    route_data = Column(JSON, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
