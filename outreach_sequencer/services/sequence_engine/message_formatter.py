"""
Message personalization.

This module contains functionality for:
- Building the per-target context handed to the message generator
- Placeholder replacement in step templates
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from outreach_sequencer.services.sequence_engine.validation import PLACEHOLDER_PATTERN

logger = logging.getLogger(__name__)


@dataclass
class TargetContext:
    target_id: str
    first_name: str = ''
    last_name: str = ''
    full_name: str = ''
    email: Optional[str] = None
    company_name: str = ''
    status: Optional[str] = None
    priority: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)
    engagement_score: float = 0.0
    previous_messages: int = 0

    def placeholders(self) -> Dict[str, str]:
        values = {
            'first_name': self.first_name or 'there',
            'last_name': self.last_name or '',
            'full_name': self.full_name or self.first_name or 'there',
            'name': self.full_name or self.first_name or 'there',
            'company': self.company_name or 'your company',
            'company_name': self.company_name or 'your company',
            'email': self.email or '',
        }
        values.update({key: str(value) for key, value in self.variables.items()})
        return values


def build_target_context(prospect, customization: Optional[Dict[str, Any]] = None,
                         engagement_score: float = 0.0, previous_messages: int = 0) -> TargetContext:
    """Build a TargetContext from a Prospect row (or None for an unknown target)."""
    variables = dict((customization or {}).get('variables') or {})
    if prospect is None:
        return TargetContext(target_id='', variables=variables,
                             engagement_score=engagement_score, previous_messages=previous_messages)

    first_name = prospect.first_name or ''
    if not first_name and prospect.name:
        first_name = prospect.name.split()[0]
    return TargetContext(
        target_id=str(prospect.id),
        first_name=first_name,
        last_name=prospect.last_name or '',
        full_name=prospect.full_name if prospect.full_name != 'Unknown' else '',
        email=prospect.email,
        company_name=prospect.company_name or '',
        status=prospect.status,
        priority=prospect.priority,
        variables=variables,
        engagement_score=engagement_score,
        previous_messages=previous_messages,
    )


def render_template(template: str, context: TargetContext) -> str:
    """Replace {{placeholder}} tokens; unknown placeholders are left in place."""
    if not template:
        return ""

    values = context.placeholders()
    missing = []

    def _replace(match):
        key = match.group(1)
        if key in values:
            return values[key]
        missing.append(key)
        return match.group(0)

    rendered = PLACEHOLDER_PATTERN.sub(_replace, template)
    if missing:
        logger.warning(f"Unresolved placeholders {missing} for target {context.target_id}")
    return rendered
