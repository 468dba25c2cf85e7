from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil import parser as date_parser

from ..db.repository import AvailabilityRepository
from ..errors import InvalidRequest
from ..schemas import AvailabilityRule, AvailabilityRuleCreate

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30


def day_of_week(day: date) -> int:
    # 0 = Sunday ... 6 = Saturday
    return (day.weekday() + 1) % 7


def parse_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(value, fuzzy=True).date()
    except (ValueError, OverflowError) as exc:
        raise InvalidRequest(f"Could not understand the date '{value}'.") from exc


def slot_times(start_time: str, end_time: str, slot_minutes: int = SLOT_MINUTES) -> list[str]:
    """Start times of the whole slots that fit between ``start_time`` and ``end_time``."""
    current = datetime.strptime(start_time, "%H:%M")
    end = datetime.strptime(end_time, "%H:%M")
    step = timedelta(minutes=slot_minutes)
    times: list[str] = []
    while current + step <= end:
        times.append(current.strftime("%H:%M"))
        current += step
    return times


def format_slot(day: date, time: str) -> str:
    dt = datetime.strptime(f"{day.isoformat()} {time}", "%Y-%m-%d %H:%M")
    return dt.strftime("%a %b %d at %-I:%M %p")


class AvailabilityService:
    def __init__(self, repo: AvailabilityRepository, slot_minutes: int = SLOT_MINUTES) -> None:
        self.repo = repo
        self.slot_minutes = slot_minutes

    def list_rules(self, provider_id: str) -> list[AvailabilityRule]:
        return self.repo.list_by_provider(provider_id)

    def create_rule(self, provider_id: str, rule: AvailabilityRuleCreate) -> Optional[AvailabilityRule]:
        if rule.start_time >= rule.end_time:
            logger.warning(
                "Rejected availability rule for %s: %s-%s does not end after it starts",
                provider_id,
                rule.start_time,
                rule.end_time,
            )
            return None
        created = AvailabilityRule(provider_id=provider_id, **rule.model_dump())
        return self.repo.create(created)

    def delete_rule(self, rule_id: str) -> bool:
        return self.repo.delete(rule_id)

    def available_times(self, provider_id: str, target: str | date) -> list[str]:
        """Bookable start times for ``target``, in rule order.

        Overlapping rules yield duplicate times and existing appointments are
        not subtracted: the result is the provider's capacity for the day.
        """
        day = parse_date(target)
        rules = self.repo.list_for_day(provider_id, day_of_week(day))
        times: list[str] = []
        for rule in rules:
            times.extend(slot_times(rule.start_time, rule.end_time, self.slot_minutes))
        return times
