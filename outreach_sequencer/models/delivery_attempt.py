import uuid
from datetime import datetime

from outreach_sequencer.extensions import db


class DeliveryAttempt(db.Model):
    """Marker written before a step is generated and sent.

    A step is sent at most once per ``attempt_key``; a retry after a failed
    record write finds the ``sent`` marker and only records completion.
    """
    __tablename__ = 'delivery_attempts'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    attempt_key = db.Column(db.String(80), nullable=False, unique=True)
    execution_id = db.Column(db.String(36), nullable=False, index=True)
    step_id = db.Column(db.String(64), nullable=False)
    step_index = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, sent, discarded
    subject = db.Column(db.String(255), nullable=True)
    content = db.Column(db.Text, nullable=True)
    delivery_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)

    @staticmethod
    def key_for(execution_id: str, step_index: int) -> str:
        return f"{execution_id}:{step_index}"

    def to_dict(self):
        return {
            'id': str(self.id),
            'attempt_key': self.attempt_key,
            'execution_id': str(self.execution_id),
            'step_id': self.step_id,
            'step_index': self.step_index,
            'status': self.status,
            'subject': self.subject,
            'content': self.content,
            'delivery_id': self.delivery_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None
        }

    def __repr__(self):
        return f'<DeliveryAttempt {self.attempt_key} {self.status}>'
