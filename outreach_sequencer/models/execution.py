import uuid
from datetime import datetime
from typing import List

from sqlalchemy import JSON, Index, text

from outreach_sequencer.extensions import db

EXECUTION_STATUSES = ('active', 'paused', 'completed', 'cancelled')
LIVE_STATUSES = ('active', 'paused')
TERMINAL_STATUSES = ('completed', 'cancelled')


class SequenceExecution(db.Model):
    """Per-target runtime state of a sequence.

    Only the sequence engine and the execution store mutate these rows, always
    through a compare-and-swap on ``version``.
    """
    __tablename__ = 'sequence_executions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sequence_id = db.Column(db.String(36), nullable=False, index=True)  # weak reference, no FK
    target_id = db.Column(db.String(36), nullable=False, index=True)
    current_step_index = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default='active')
    # Status options: active, paused, completed, cancelled
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    next_message_due_at = db.Column(db.DateTime, nullable=True, index=True)
    completed_steps = db.Column(JSON, nullable=False, default=list)
    customization = db.Column(JSON, nullable=True)  # {'variables': {...}, 'overrides': {...}}
    version = db.Column(db.Integer, nullable=False, default=1)

    # Failure and gating diagnostics
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    last_error_at = db.Column(db.DateTime, nullable=True)
    stalled_at = db.Column(db.DateTime, nullable=True)
    blocked_reason = db.Column(db.String(100), nullable=True)
    blocked_since = db.Column(db.DateTime, nullable=True)

    # Processing claim
    lease_token = db.Column(db.String(36), nullable=True)
    lease_acquired_at = db.Column(db.DateTime, nullable=True)

    paused_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(100), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        # At most one non-cancelled execution per (sequence, target)
        Index(
            'uq_live_execution_per_target', 'sequence_id', 'target_id', unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    @property
    def is_stalled(self) -> bool:
        return self.status == 'active' and self.stalled_at is not None

    @property
    def is_blocked(self) -> bool:
        return self.status == 'active' and self.blocked_reason is not None

    def check_invariants(self, total_steps: int) -> List[str]:
        """Return a list of violated record invariants (empty when consistent)."""
        violations = []
        completed = self.completed_steps or []
        if self.current_step_index < 0:
            violations.append('current_step_index is negative')
        if self.status in ('active', 'paused') and len(completed) != self.current_step_index:
            violations.append(
                f'{len(completed)} completed steps but current_step_index is {self.current_step_index}'
            )
        if self.status == 'completed' and self.current_step_index != total_steps:
            violations.append(
                f'completed with current_step_index {self.current_step_index} of {total_steps} steps'
            )
        if self.status not in EXECUTION_STATUSES:
            violations.append(f"unknown status '{self.status}'")
        return violations

    def to_dict(self):
        return {
            'id': str(self.id),
            'sequence_id': str(self.sequence_id),
            'target_id': str(self.target_id),
            'current_step_index': self.current_step_index,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'next_message_due_at': self.next_message_due_at.isoformat() if self.next_message_due_at else None,
            'completed_steps': self.completed_steps or [],
            'customization': self.customization,
            'version': self.version,
            'attempt_count': self.attempt_count,
            'last_error': self.last_error,
            'stalled': self.is_stalled,
            'stalled_at': self.stalled_at.isoformat() if self.stalled_at else None,
            'blocked_reason': self.blocked_reason,
            'blocked_since': self.blocked_since.isoformat() if self.blocked_since else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancel_reason': self.cancel_reason,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<SequenceExecution {self.id} step={self.current_step_index} status={self.status}>'
