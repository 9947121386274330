import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON

from outreach_sequencer.extensions import db

MESSAGE_TYPES = ('initial', 'followup', 'proposal', 'check_in', 'milestone', 'urgent')
TONES = ('formal', 'casual', 'friendly', 'urgent')


@dataclass(frozen=True)
class StepConditions:
    requires_previous_response: bool = False
    minimum_engagement_score: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.requires_previous_response and not self.minimum_engagement_score

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'requiresPreviousResponse': self.requires_previous_response}
        if self.minimum_engagement_score is not None:
            data['minimumEngagementScore'] = self.minimum_engagement_score
        return data


@dataclass(frozen=True)
class SequenceStep:
    """One validated step of a sequence. Built only from normalized JSON."""
    id: str
    message_type: str
    tone: str
    delay_days: int
    template: str
    conditions: StepConditions = field(default_factory=StepConditions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SequenceStep':
        conditions = data.get('conditions') or {}
        return cls(
            id=data['id'],
            message_type=data['messageType'],
            tone=data['tone'],
            delay_days=int(data['delayDays']),
            template=data.get('template', ''),
            conditions=StepConditions(
                requires_previous_response=bool(conditions.get('requiresPreviousResponse', False)),
                minimum_engagement_score=conditions.get('minimumEngagementScore'),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'messageType': self.message_type,
            'tone': self.tone,
            'delayDays': self.delay_days,
            'template': self.template,
        }
        if not self.conditions.is_empty:
            data['conditions'] = self.conditions.to_dict()
        return data


class Sequence(db.Model):
    __tablename__ = 'outreach_sequences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    target_audience = db.Column(db.String(255), nullable=True)
    steps_json = db.Column(JSON, nullable=False, default=list)  # normalized step dicts
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def steps(self) -> List[SequenceStep]:
        return [SequenceStep.from_dict(step) for step in (self.steps_json or [])]

    @property
    def total_steps(self) -> int:
        return len(self.steps_json or [])

    @property
    def total_duration(self) -> int:
        """Days from start until the last step becomes due."""
        return sum(int(step.get('delayDays', 0)) for step in (self.steps_json or []))

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'target_audience': self.target_audience,
            'steps': self.steps_json or [],
            'total_steps': self.total_steps,
            'total_duration': self.total_duration,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<Sequence {self.name}>'
