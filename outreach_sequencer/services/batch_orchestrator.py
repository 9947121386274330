"""
Batch orchestration of sequences over filtered targets.

Creates one execution record per matching prospect, skipping prospects that
already have a live (non-cancelled) record for the sequence.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from outreach_sequencer.exceptions import DuplicateExecutionError, InvalidFilterError, SequenceNotFoundError
from outreach_sequencer.extensions import db
from outreach_sequencer.models import Prospect, Sequence, TONES
from outreach_sequencer.services.sequence_engine.validation import MAX_FOLLOWUP_DELAY_DAYS, MIN_FOLLOWUP_DELAY_DAYS
from outreach_sequencer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TARGET_FILTERS = {'status': 'new', 'category': 'prospect'}

FILTER_KEYS = ('status', 'category', 'priority', 'lastContactDays', 'tags')


@dataclass(frozen=True)
class TargetFilter:
    """Declarative predicate over prospects."""
    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    last_contact_days: Optional[int] = None
    tags: tuple = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TargetFilter':
        if data is None:
            data = DEFAULT_TARGET_FILTERS
        if not isinstance(data, dict):
            raise InvalidFilterError("filters must be an object")

        unknown = sorted(set(data) - set(FILTER_KEYS))
        if unknown:
            raise InvalidFilterError(f"Unknown filter field(s): {', '.join(unknown)}")

        for key in ('status', 'category', 'priority'):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise InvalidFilterError(f"filters.{key} must be a string")

        last_contact_days = data.get('lastContactDays')
        if last_contact_days is not None:
            if isinstance(last_contact_days, bool) or not isinstance(last_contact_days, int) or last_contact_days < 0:
                raise InvalidFilterError("filters.lastContactDays must be a non-negative integer")

        tags = data.get('tags') or []
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise InvalidFilterError("filters.tags must be a list of strings")

        return cls(
            status=data.get('status'),
            category=data.get('category'),
            priority=data.get('priority'),
            last_contact_days=last_contact_days,
            tags=tuple(tags),
        )

    def query(self):
        query = Prospect.query
        if self.status:
            query = query.filter(Prospect.status == self.status)
        if self.category:
            query = query.filter(Prospect.category == self.category)
        if self.priority:
            query = query.filter(Prospect.priority == self.priority)
        return query.order_by(Prospect.created_at.asc())

    def matches(self, prospect: Prospect, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if self.status and prospect.status != self.status:
            return False
        if self.category and prospect.category != self.category:
            return False
        if self.priority and prospect.priority != self.priority:
            return False
        if self.tags:
            prospect_tags = set(prospect.tags or [])
            if not set(self.tags).issubset(prospect_tags):
                return False
        if self.last_contact_days is not None and prospect.last_contact_at is not None:
            # Only targets not contacted within the window
            if prospect.last_contact_at > now - timedelta(days=self.last_contact_days):
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status,
            'category': self.category,
            'priority': self.priority,
            'lastContactDays': self.last_contact_days,
            'tags': list(self.tags),
        }
        return {key: value for key, value in data.items() if value not in (None, [])}


@dataclass
class BatchResult:
    sequence_id: str
    matched: int = 0
    created: List[str] = field(default_factory=list)
    skipped_duplicates: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sequence_id': self.sequence_id,
            'matched': self.matched,
            'created_count': len(self.created),
            'created': self.created,
            'skipped_count': len(self.skipped_duplicates),
            'skipped_duplicates': self.skipped_duplicates,
        }


def validate_customization(customization: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Check the per-run variables and tone/delay overrides."""
    if customization is None:
        return None
    if not isinstance(customization, dict):
        raise InvalidFilterError("customization must be an object")

    variables = customization.get('variables') or {}
    if not isinstance(variables, dict) or not all(isinstance(k, str) for k in variables):
        raise InvalidFilterError("customization.variables must be an object of strings")

    overrides = customization.get('overrides') or {}
    if not isinstance(overrides, dict):
        raise InvalidFilterError("customization.overrides must be an object")
    tone = overrides.get('tone')
    if tone is not None and tone not in TONES:
        raise InvalidFilterError(f"customization.overrides.tone must be one of: {', '.join(TONES)}")
    delay_days = overrides.get('delayDays')
    if delay_days is not None:
        if isinstance(delay_days, bool) or not isinstance(delay_days, int):
            raise InvalidFilterError("customization.overrides.delayDays must be an integer")
        if not MIN_FOLLOWUP_DELAY_DAYS <= delay_days <= MAX_FOLLOWUP_DELAY_DAYS:
            raise InvalidFilterError(
                f"customization.overrides.delayDays must be between {MIN_FOLLOWUP_DELAY_DAYS} and {MAX_FOLLOWUP_DELAY_DAYS}"
            )

    cleaned = {}
    if variables:
        cleaned['variables'] = {k: str(v) for k, v in variables.items()}
    if overrides:
        cleaned['overrides'] = {k: v for k, v in overrides.items() if k in ('tone', 'delayDays') and v is not None}
    return cleaned or None


class BatchOrchestrator:
    """Fans a sequence out over the prospects matching a filter."""

    def __init__(self, store, engine=None):
        self.store = store
        self.engine = engine

    def start_sequence(self, sequence_id: str, filters: Optional[Dict[str, Any]] = None,
                       customization: Optional[Dict[str, Any]] = None,
                       now: Optional[datetime] = None) -> BatchResult:
        now = now or utcnow()
        target_filter = TargetFilter.from_dict(filters)
        customization = validate_customization(customization)

        sequence = db.session.get(Sequence, sequence_id)
        if sequence is None:
            raise SequenceNotFoundError(sequence_id)

        result = BatchResult(sequence_id=sequence.id)
        for prospect in target_filter.query().all():
            if not target_filter.matches(prospect, now):
                continue
            result.matched += 1
            try:
                execution = self.store.create_execution(sequence, prospect.id, now, customization)
                result.created.append(execution.id)
            except DuplicateExecutionError as e:
                logger.info(f"Skipping target {prospect.id}: already covered by execution {e.existing_id}")
                result.skipped_duplicates.append({'target_id': prospect.id, 'execution_id': e.existing_id})

        if not sequence.is_active:
            sequence.is_active = True
            sequence.updated_at = now
            db.session.commit()

        logger.info(
            f"Sequence {sequence.id} started: {len(result.created)} created, "
            f"{len(result.skipped_duplicates)} skipped as duplicates out of {result.matched} matched"
        )
        return result

    def start_for_target(self, sequence_id: str, target_id: str,
                         customization: Optional[Dict[str, Any]] = None,
                         now: Optional[datetime] = None):
        """Start a sequence for one target; a live record raises DuplicateExecutionError."""
        sequence = db.session.get(Sequence, sequence_id)
        if sequence is None:
            raise SequenceNotFoundError(sequence_id)
        return self.store.create_execution(sequence, target_id, now, validate_customization(customization))

    def run_created(self, result: BatchResult, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Process step 0 of the records a batch just created."""
        if self.engine is None:
            return []
        processed = []
        for execution_id in result.created:
            try:
                processed.append(self.engine.process_execution(execution_id, now).to_dict())
            except Exception as e:
                logger.error(f"Error processing new execution {execution_id}: {str(e)}")
                db.session.rollback()
                processed.append({'execution_id': execution_id, 'outcome': 'error', 'detail': str(e)})
        return processed
