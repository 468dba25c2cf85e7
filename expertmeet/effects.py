"""Best-effort side effects that run after a primary action has committed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class Effect:
    name: str
    run: Callable[[], Any]


def run_effects(effects: list[Effect], *, context: str) -> list[str]:
    """Run every effect in order, logging failures. Returns the names that failed."""
    failed: list[str] = []
    for effect in effects:
        try:
            effect.run()
        except Exception:
            logger.exception("%s: side effect %s failed; primary result kept", context, effect.name)
            failed.append(effect.name)
    return failed
