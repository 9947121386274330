import uuid
from datetime import datetime

from sqlalchemy import JSON

from outreach_sequencer.extensions import db

ENGAGEMENT_EVENT_TYPES = ('open', 'click', 'reply', 'meeting_scheduled')


class EngagementEvent(db.Model):
    __tablename__ = 'engagement_events'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Correlated to executions by target, not by foreign key
    target_id = db.Column(db.String(36), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False)
    # Event types: open, click, reply, meeting_scheduled
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sentiment = db.Column(db.String(50), nullable=True)
    meta_json = db.Column(JSON, nullable=True)

    def to_dict(self):
        return {
            'id': str(self.id),
            'target_id': str(self.target_id),
            'event_type': self.event_type,
            'timestamp': self.timestamp.isoformat(),
            'sentiment': self.sentiment,
            'meta_json': self.meta_json
        }

    def __repr__(self):
        return f'<EngagementEvent {self.event_type} for target {self.target_id}>'
