"""
AI Usage Ledger - one append-only row per provider call.

Writes are fire-and-forget: ``log_usage`` schedules the insert on its own
session and returns immediately. A failed write is logged and dropped; it
never fails or delays the request that made the provider call.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Set

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.database import async_session_maker
from app.db.models import AIModelConfig, AIUsageLog, CredentialSource

logger = logging.getLogger(__name__)

FREE_PROVIDERS = {"ollama"}


@dataclass
class UsageRecord:
    """A single provider call to be recorded"""
    user_id: str
    organization_id: str
    provider: str
    model_id: str
    capability: str  # "chat" or "embeddings"
    tokens_input: int = 0
    tokens_output: int = 0
    credential_source: str = CredentialSource.SYSTEM.value
    conversation_id: Optional[str] = None


@dataclass
class UsageBucket:
    requests: int = 0
    tokens_input: int = 0
    tokens_output: int = 0
    cost: float = 0.0

    def add(self, requests: int, tokens_input: int, tokens_output: int, cost: float) -> None:
        self.requests += requests
        self.tokens_input += tokens_input
        self.tokens_output += tokens_output
        self.cost += cost


@dataclass
class UsageSummary:
    """Aggregated usage for a date range. All zero when nothing was recorded."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total: UsageBucket = field(default_factory=UsageBucket)
    by_provider: Dict[str, UsageBucket] = field(default_factory=dict)
    by_model: Dict[str, UsageBucket] = field(default_factory=dict)
    by_capability: Dict[str, UsageBucket] = field(default_factory=dict)


class AIUsageService:
    """Usage ledger with a non-blocking write path and aggregating reads."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
        config: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.config = config or get_settings()
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def log_usage(self, record: UsageRecord) -> None:
        """Schedule the write and return immediately."""
        try:
            task = asyncio.get_running_loop().create_task(self._write(record))
        except RuntimeError:
            logger.error(f"No running event loop, usage for {record.provider}/{record.model_id} dropped")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for scheduled writes (shutdown hook, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _write(self, record: UsageRecord) -> None:
        try:
            async with self.session_factory() as session:
                cost = await self.calculate_cost(
                    session, record.provider, record.model_id,
                    record.tokens_input, record.tokens_output,
                )
                session.add(AIUsageLog(
                    user_id=record.user_id,
                    organization_id=record.organization_id,
                    provider=record.provider,
                    model_id=record.model_id,
                    capability=record.capability,
                    tokens_input=record.tokens_input,
                    tokens_output=record.tokens_output,
                    cost=cost,
                    credential_source=record.credential_source,
                    conversation_id=record.conversation_id,
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to log AI usage ({record.provider}/{record.model_id}): {e}")

    async def calculate_cost(
        self,
        session: AsyncSession,
        provider: str,
        model_id: str,
        tokens_input: int,
        tokens_output: int,
    ) -> float:
        """USD cost from per-1K-token pricing. Local providers are free."""
        if provider in FREE_PROVIDERS:
            return 0.0

        result = await session.execute(
            select(AIModelConfig).where(
                AIModelConfig.provider == provider,
                AIModelConfig.model_id == model_id,
            ).limit(1)
        )
        model_config = result.scalar_one_or_none()
        if model_config is not None:
            input_price = model_config.cost_per_1k_input or 0.0
            output_price = model_config.cost_per_1k_output or 0.0
        else:
            pricing = self.config.ai_pricing_per_1k.get(model_id)
            if not pricing:
                return 0.0
            input_price = pricing.get("input", 0.0)
            output_price = pricing.get("output", 0.0)

        return (tokens_input / 1000) * input_price + (tokens_output / 1000) * output_price

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_user_usage(
        self,
        db: AsyncSession,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageSummary:
        return await self._summarize(db, AIUsageLog.user_id == user_id, start, end)

    async def get_organization_usage(
        self,
        db: AsyncSession,
        organization_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageSummary:
        return await self._summarize(db, AIUsageLog.organization_id == organization_id, start, end)

    async def _summarize(self, db: AsyncSession, owner_clause, start, end) -> UsageSummary:
        query = (
            select(
                AIUsageLog.provider,
                AIUsageLog.model_id,
                AIUsageLog.capability,
                func.count(AIUsageLog.id),
                func.coalesce(func.sum(AIUsageLog.tokens_input), 0),
                func.coalesce(func.sum(AIUsageLog.tokens_output), 0),
                func.coalesce(func.sum(AIUsageLog.cost), 0.0),
            )
            .where(owner_clause)
            .group_by(AIUsageLog.provider, AIUsageLog.model_id, AIUsageLog.capability)
        )
        if start is not None:
            query = query.where(AIUsageLog.created_at >= start)
        if end is not None:
            query = query.where(AIUsageLog.created_at <= end)

        summary = UsageSummary(start=start, end=end)
        for provider, model_id, capability, count, t_in, t_out, cost in (await db.execute(query)).all():
            values = (int(count), int(t_in), int(t_out), float(cost))
            summary.total.add(*values)
            summary.by_provider.setdefault(provider, UsageBucket()).add(*values)
            summary.by_model.setdefault(model_id, UsageBucket()).add(*values)
            summary.by_capability.setdefault(capability, UsageBucket()).add(*values)
        return summary


_usage_service: Optional[AIUsageService] = None


def get_usage_service() -> AIUsageService:
    """Get the process-wide usage ledger"""
    global _usage_service
    if _usage_service is None:
        _usage_service = AIUsageService()
    return _usage_service
