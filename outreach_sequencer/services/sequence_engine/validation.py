"""
Sequence definition validation.

This module contains functionality for:
- Normalizing raw step JSON into the stored step shape
- Rejecting malformed steps (unknown messageType/tone, negative delay)
- Clamping delays (first step immediate, later steps 1-14 days)
- Coercing AI-drafted steps into a valid definition
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Tuple

from outreach_sequencer.exceptions import InvalidSequenceDefinition
from outreach_sequencer.models.sequence import MESSAGE_TYPES, TONES

logger = logging.getLogger(__name__)

MIN_FOLLOWUP_DELAY_DAYS = 1
MAX_FOLLOWUP_DELAY_DAYS = 14
DRAFT_DEFAULT_DELAY_DAYS = 3

PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*([a-zA-Z0-9_]+)\s*\}\}')


def _as_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    return None


def _clamp_delay(index: int, delay: int, warnings: List[str]) -> int:
    if index == 0:
        if delay != 0:
            warnings.append(f"Step 1: delayDays {delay} reset to 0 (first step fires immediately)")
        return 0
    clamped = max(MIN_FOLLOWUP_DELAY_DAYS, min(MAX_FOLLOWUP_DELAY_DAYS, delay))
    if clamped != delay:
        warnings.append(f"Step {index + 1}: delayDays {delay} clamped to {clamped}")
    return clamped


def _normalize_conditions(index: int, raw, errors: List[str]) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        errors.append(f"Step {index + 1}: conditions must be an object")
        return {}

    conditions: Dict[str, Any] = {}
    requires_response = raw.get('requiresPreviousResponse', False)
    if not isinstance(requires_response, bool):
        errors.append(f"Step {index + 1}: requiresPreviousResponse must be a boolean")
    elif requires_response:
        if index == 0:
            errors.append("Step 1: the first step cannot require a previous response")
        conditions['requiresPreviousResponse'] = True

    score = raw.get('minimumEngagementScore')
    if score is not None:
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            errors.append(f"Step {index + 1}: minimumEngagementScore must be a number")
        elif not 0 <= score <= 1:
            errors.append(f"Step {index + 1}: minimumEngagementScore must be between 0 and 1")
        elif score > 0:
            conditions['minimumEngagementScore'] = float(score)

    if conditions and 'requiresPreviousResponse' not in conditions:
        conditions['requiresPreviousResponse'] = False
    return conditions


def normalize_steps(raw_steps) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Validate raw step JSON and return (normalized_steps, warnings).

    Raises InvalidSequenceDefinition listing every problem found.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(raw_steps, list) or not raw_steps:
        raise InvalidSequenceDefinition("Sequence must contain at least one step")

    normalized = []
    seen_ids = set()
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            errors.append(f"Step {i + 1}: must be an object")
            continue

        message_type = raw.get('messageType')
        if message_type not in MESSAGE_TYPES:
            errors.append(f"Step {i + 1}: Invalid messageType '{message_type}'")

        tone = raw.get('tone')
        if tone not in TONES:
            errors.append(f"Step {i + 1}: Invalid tone '{tone}'")

        raw_delay = raw.get('delayDays', 0)
        delay = _as_int(raw_delay)
        if delay is None:
            errors.append(f"Step {i + 1}: delayDays must be an integer")
            delay = 0
        elif delay < 0:
            errors.append(f"Step {i + 1}: delayDays cannot be negative")
        else:
            delay = _clamp_delay(i, delay, warnings)

        template = raw.get('template')
        if not isinstance(template, str) or not template.strip():
            errors.append(f"Step {i + 1}: Missing template")
            template = ''
        else:
            if template.count('{{') != template.count('}}'):
                errors.append(f"Step {i + 1}: Unbalanced placeholder brackets")
            elif not PLACEHOLDER_PATTERN.search(template):
                warnings.append(f"Step {i + 1}: No personalization placeholders found")

        step_id = raw.get('id') or str(uuid.uuid4())
        if not isinstance(step_id, str):
            step_id = str(step_id)
        if step_id in seen_ids:
            errors.append(f"Step {i + 1}: Duplicate step id '{step_id}'")
        seen_ids.add(step_id)

        step = {
            'id': step_id,
            'messageType': message_type,
            'tone': tone,
            'delayDays': delay,
            'template': template,
        }
        conditions = _normalize_conditions(i, raw.get('conditions'), errors)
        if conditions:
            step['conditions'] = conditions
        normalized.append(step)

    if errors:
        raise InvalidSequenceDefinition(errors)

    return normalized, warnings


def coerce_draft_steps(raw_steps) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Turn loosely structured AI output into a valid step list.

    Unknown message types become 'followup', unknown tones 'friendly', missing
    delays default to three days, and steps after the third require a
    minimum engagement score of 0.3.
    """
    if not isinstance(raw_steps, list):
        raise InvalidSequenceDefinition("Draft must be a list of steps")

    coerced = []
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            continue
        message_type = raw.get('messageType')
        tone = raw.get('tone')
        delay = _as_int(raw.get('delayDays'))
        step = {
            'messageType': message_type if message_type in MESSAGE_TYPES else 'followup',
            'tone': tone if tone in TONES else 'friendly',
            'delayDays': 0 if i == 0 else max(
                MIN_FOLLOWUP_DELAY_DAYS,
                min(MAX_FOLLOWUP_DELAY_DAYS, delay or DRAFT_DEFAULT_DELAY_DAYS)
            ),
            'template': raw.get('template') or '',
        }
        if i > 2:
            step['conditions'] = {'requiresPreviousResponse': False, 'minimumEngagementScore': 0.3}
        coerced.append(step)

    return normalize_steps(coerced)
