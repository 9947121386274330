"""
Step precondition evaluation.

A gated step runs only when every condition it declares holds:
- requiresPreviousResponse: the last completed step has a received response
- minimumEngagementScore: the target's engagement score meets the threshold
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from outreach_sequencer.models.sequence import SequenceStep

logger = logging.getLogger(__name__)

AWAITING_RESPONSE = 'awaiting_response'
LOW_ENGAGEMENT = 'low_engagement'


@dataclass(frozen=True)
class ConditionResult:
    passed: bool
    reason: Optional[str] = None
    engagement_score: Optional[float] = None


def previous_response_received(completed_steps: List[dict]) -> bool:
    if not completed_steps:
        return False
    response = completed_steps[-1].get('response') or {}
    return response.get('received') is True


def evaluate_conditions(step: SequenceStep, completed_steps: List[dict], engagement_score: float) -> ConditionResult:
    conditions = step.conditions

    if conditions.requires_previous_response and not previous_response_received(completed_steps):
        return ConditionResult(False, AWAITING_RESPONSE, engagement_score)

    threshold = conditions.minimum_engagement_score
    if threshold is not None and engagement_score < threshold:
        return ConditionResult(False, LOW_ENGAGEMENT, engagement_score)

    return ConditionResult(True, None, engagement_score)
