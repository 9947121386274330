"""
Engagement signals and scoring.

This module contains functionality for:
- The pure engagement score over a target's events
- Reconciling reply events into completed-step responses
- The database-backed engagement signal source
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from outreach_sequencer.extensions import db
from outreach_sequencer.models import EngagementEvent, ENGAGEMENT_EVENT_TYPES, Prospect
from outreach_sequencer.utils.time_utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_EVENT_WEIGHTS = {
    'open': 0.1,
    'click': 0.3,
    'reply': 0.6,
    'meeting_scheduled': 1.0,
}

# Replies and meetings count as contact with the target
CONTACT_EVENT_TYPES = ('reply', 'meeting_scheduled')


@dataclass(frozen=True)
class EngagementSignal:
    target_id: str
    event_type: str
    timestamp: datetime
    sentiment: Optional[str] = None

    @classmethod
    def from_event(cls, event: EngagementEvent) -> 'EngagementSignal':
        return cls(
            target_id=str(event.target_id),
            event_type=event.event_type,
            timestamp=event.timestamp,
            sentiment=event.sentiment,
        )


def compute_engagement_score(signals: Iterable[EngagementSignal], now: datetime,
                             half_life_days: float = 14.0,
                             weights: Optional[Dict[str, float]] = None) -> float:
    """Score a target's responsiveness in [0, 1].

    Each event contributes its type weight halved every ``half_life_days`` of
    age; contributions are summed and clamped. Events stamped in the future
    count as fresh. Unknown event types contribute nothing.
    """
    weights = weights or DEFAULT_EVENT_WEIGHTS
    total = 0.0
    for signal in signals:
        weight = weights.get(signal.event_type, 0.0)
        if not weight:
            continue
        age_days = max((now - signal.timestamp).total_seconds(), 0.0) / 86400.0
        if half_life_days and half_life_days > 0:
            weight *= 0.5 ** (age_days / half_life_days)
        total += weight
    return max(0.0, min(1.0, total))


def apply_reply_signals(completed_steps: List[dict], signals: Iterable[EngagementSignal]) -> List[dict]:
    """Return a copy of ``completed_steps`` with replies attributed to the step they answer.

    A reply at or after step i's completedAt and before step i+1's marks
    step i as responded. Entries already marked received are left untouched.
    """
    updated = [dict(entry, response=dict(entry.get('response') or {'received': False}))
               for entry in completed_steps]
    if not updated:
        return updated

    replies = sorted(
        (s for s in signals if s.event_type == 'reply'),
        key=lambda s: s.timestamp
    )
    if not replies:
        return updated

    boundaries = [parse_timestamp(entry.get('completedAt')) for entry in updated]
    for i, entry in enumerate(updated):
        if entry['response'].get('received'):
            continue
        start = boundaries[i]
        end = boundaries[i + 1] if i + 1 < len(boundaries) else None
        for reply in replies:
            if start is not None and reply.timestamp < start:
                continue
            if end is not None and reply.timestamp >= end:
                break
            entry['response'] = {
                'received': True,
                'receivedAt': reply.timestamp.isoformat(),
                'sentiment': reply.sentiment,
            }
            break
    return updated


class EngagementSource:
    """Reads and records engagement events for targets."""

    def get_events(self, target_id: str) -> List[EngagementSignal]:
        events = (
            EngagementEvent.query
            .filter_by(target_id=target_id)
            .order_by(EngagementEvent.timestamp.asc())
            .all()
        )
        return [EngagementSignal.from_event(event) for event in events]

    def score(self, target_id: str, now: Optional[datetime] = None, half_life_days: float = 14.0) -> float:
        return compute_engagement_score(self.get_events(target_id), now or utcnow(), half_life_days)

    def record_event(self, target_id: str, event_type: str, timestamp: Optional[datetime] = None,
                     sentiment: Optional[str] = None, meta: Optional[dict] = None) -> EngagementEvent:
        if event_type not in ENGAGEMENT_EVENT_TYPES:
            raise ValueError(f"Unknown engagement event type '{event_type}'")

        event = EngagementEvent(
            target_id=target_id,
            event_type=event_type,
            timestamp=timestamp or utcnow(),
            sentiment=sentiment,
            meta_json=meta,
        )
        db.session.add(event)

        if event_type in CONTACT_EVENT_TYPES:
            prospect = db.session.get(Prospect, target_id)
            if prospect and (prospect.last_contact_at is None or prospect.last_contact_at < event.timestamp):
                prospect.last_contact_at = event.timestamp

        db.session.commit()
        logger.info(f"Recorded {event_type} engagement event for target {target_id}")
        return event
