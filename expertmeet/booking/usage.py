"""Subscription usage metering.

A provider's consumption is tracked per calendar month in a ``UsagePeriod``
record and gated by the limits of their active ``SubscriptionPlan``. Callers
must run ``check_limit`` before committing a chargeable action and
``record_usage`` after it succeeded.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Optional

from ..db.repository import PlanRepository, UsageRepository
from ..errors import ConfigurationError, DuplicateRecord, InvalidRequest, QuotaExceeded, StaleRecord
from ..schemas import (
    ProviderSubscription,
    SubscriptionPlan,
    UsageDelta,
    UsageKind,
    UsageLine,
    UsagePeriod,
    UsageStats,
)

logger = logging.getLogger(__name__)


def rounded_mb(size_mb: float) -> int:
    return math.ceil(size_mb or 0)


class UsageMeter:
    def __init__(
        self,
        usage_repo: UsageRepository,
        plan_repo: PlanRepository,
        *,
        default_plan_name: str = "Free",
        cas_attempts: int = 3,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.usage_repo = usage_repo
        self.plan_repo = plan_repo
        self.default_plan_name = default_plan_name
        self.cas_attempts = max(1, cas_attempts)
        self.clock = clock

    def get_or_create_period(self, provider_id: str) -> UsagePeriod:
        now = self.clock()
        existing = self.usage_repo.get_period(provider_id, now.month, now.year)
        if existing:
            return existing
        logger.info("Creating usage record for provider %s for %s/%s", provider_id, now.month, now.year)
        try:
            return self.usage_repo.insert_period(
                UsagePeriod(provider_id=provider_id, month=now.month, year=now.year)
            )
        except DuplicateRecord:
            # Another request created the period first.
            period = self.usage_repo.get_period(provider_id, now.month, now.year)
            if period is None:
                raise
            return period

    def ensure_active_plan(self, provider_id: str) -> SubscriptionPlan:
        plan = self.plan_repo.get_active_plan(provider_id)
        if plan:
            return plan
        logger.warning(
            "No active subscription for provider %s. Assigning %s plan.", provider_id, self.default_plan_name
        )
        default_plan = self.plan_repo.get_plan_by_name(self.default_plan_name)
        if default_plan is None:
            raise ConfigurationError(f"No {self.default_plan_name} plan defined in subscription_plans")
        try:
            self.plan_repo.assign_plan(ProviderSubscription(provider_id=provider_id, plan_id=default_plan.id))
        except DuplicateRecord:
            # Another request assigned a plan first.
            plan = self.plan_repo.get_active_plan(provider_id)
            if plan is None:
                raise
            return plan
        return default_plan

    def check_limit(self, provider_id: str, kind: UsageKind, delta: Optional[UsageDelta] = None) -> None:
        delta = delta or UsageDelta()
        plan = self.ensure_active_plan(provider_id)
        usage = self.get_or_create_period(provider_id)

        if kind == "appointment":
            if usage.appointments_used >= plan.monthly_appointments:
                logger.error(
                    "Appointment limit exceeded for provider %s: %s/%s",
                    provider_id,
                    usage.appointments_used,
                    plan.monthly_appointments,
                )
                raise QuotaExceeded(
                    "Monthly appointment limit reached",
                    kind=kind,
                    used=usage.appointments_used,
                    limit=plan.monthly_appointments,
                )
        elif kind == "storage":
            total = usage.storage_used_mb + rounded_mb(delta.size_mb)
            if total > plan.monthly_storage_mb:
                logger.error(
                    "Storage limit exceeded for provider %s: %s/%s MB", provider_id, total, plan.monthly_storage_mb
                )
                raise QuotaExceeded(
                    "Storage limit reached",
                    kind=kind,
                    used=usage.storage_used_mb,
                    limit=plan.monthly_storage_mb,
                )
        elif kind == "chat":
            if usage.chats_used >= plan.monthly_chats:
                raise QuotaExceeded(
                    "Monthly chat limit exceeded",
                    kind=kind,
                    used=usage.chats_used,
                    limit=plan.monthly_chats,
                )
            if delta.partner_id:
                partners = set(usage.unique_chat_partners) | {delta.partner_id}
                if len(partners) > plan.monthly_chats:
                    raise QuotaExceeded(
                        "Unique chat partner limit exceeded",
                        kind=kind,
                        used=len(usage.unique_chat_partners),
                        limit=plan.monthly_chats,
                    )
        else:
            raise InvalidRequest(f"Invalid usage kind: {kind}")

    def record_usage(self, provider_id: str, kind: UsageKind, delta: Optional[UsageDelta] = None) -> UsagePeriod:
        delta = delta or UsageDelta()
        for _ in range(self.cas_attempts):
            period = self.get_or_create_period(provider_id)
            updated = _apply(period, kind, delta)
            try:
                return self.usage_repo.compare_and_swap(updated, expected_version=period.version)
            except StaleRecord:
                logger.info("Usage record for provider %s changed concurrently, re-reading", provider_id)
        raise StaleRecord(f"Could not record {kind} usage for provider {provider_id}")

    def usage_stats(self, provider_id: str) -> UsageStats:
        plan = self.ensure_active_plan(provider_id)
        usage = self.get_or_create_period(provider_id)
        return UsageStats(
            provider_id=provider_id,
            plan=plan.name,
            month=usage.month,
            year=usage.year,
            appointments=_line(usage.appointments_used, plan.monthly_appointments),
            storage_mb=_line(usage.storage_used_mb, plan.monthly_storage_mb),
            chats=_line(usage.chats_used, plan.monthly_chats),
        )


def _line(used: int, limit: int) -> UsageLine:
    return UsageLine(used=used, limit=limit, remaining=max(0, limit - used))


def _apply(period: UsagePeriod, kind: str, delta: UsageDelta) -> UsagePeriod:
    updated = period.model_copy(deep=True)
    if kind == "appointment":
        updated.appointments_used += 1
    elif kind == "storage":
        updated.storage_used_mb += rounded_mb(delta.size_mb)
    elif kind == "chat":
        updated.chats_used += 1
        if delta.partner_id and delta.partner_id not in updated.unique_chat_partners:
            updated.unique_chat_partners.append(delta.partner_id)
    else:
        raise InvalidRequest(f"Invalid usage kind: {kind}")
    updated.version += 1
    return updated
