"""
Delay calculations and timing logic.

This module contains functionality for:
- Next-step due time after a completed step
- Retry backoff after generation/send failures
- Re-check time for condition-gated steps
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from outreach_sequencer.models.sequence import SequenceStep
from outreach_sequencer.services.sequence_engine.validation import (
    MAX_FOLLOWUP_DELAY_DAYS, MIN_FOLLOWUP_DELAY_DAYS
)

logger = logging.getLogger(__name__)


def step_delay_days(step: SequenceStep, step_index: int, customization: Optional[Dict[str, Any]] = None) -> int:
    """Delay of a step in days, honouring a per-execution delay override."""
    if step_index == 0:
        return 0
    override = ((customization or {}).get('overrides') or {}).get('delayDays')
    if override is None:
        return step.delay_days
    return max(MIN_FOLLOWUP_DELAY_DAYS, min(MAX_FOLLOWUP_DELAY_DAYS, int(override)))


def next_due_at(completed_at: datetime, next_step: SequenceStep, next_index: int,
                customization: Optional[Dict[str, Any]] = None) -> datetime:
    return completed_at + timedelta(days=step_delay_days(next_step, next_index, customization))


def retry_backoff(attempt_count: int, base_seconds: int, max_seconds: int) -> timedelta:
    """Exponential backoff: base, 2*base, 4*base, ... capped at max_seconds."""
    exponent = max(attempt_count - 1, 0)
    seconds = min(base_seconds * (2 ** exponent), max_seconds)
    return timedelta(seconds=seconds)


def condition_recheck_at(now: datetime, recheck_hours: float) -> datetime:
    return now + timedelta(hours=recheck_hours)


def condition_timed_out(blocked_since: Optional[datetime], now: datetime, timeout_days: Optional[float]) -> bool:
    if timeout_days is None or blocked_since is None:
        return False
    return now - blocked_since >= timedelta(days=timeout_days)
