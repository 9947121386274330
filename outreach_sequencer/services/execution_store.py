"""
Execution record persistence.

All writes to SequenceExecution go through ``conditional_update``, a
compare-and-swap on the record's ``version`` column. Lifecycle commands
(pause, resume, cancel, retry) re-read and retry on conflict.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from outreach_sequencer.extensions import db
from outreach_sequencer.exceptions import (
    DuplicateExecutionError, ExecutionNotFoundError, InvalidTransitionError, PersistenceConflict
)
from outreach_sequencer.models import DeliveryAttempt, Sequence, SequenceExecution
from outreach_sequencer.models.execution import TERMINAL_STATUSES
from outreach_sequencer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

COMMAND_RETRIES = 3


class ExecutionStore:
    """Execution record and sequence definition store backed by SQLAlchemy."""

    # Reads

    def get_sequence(self, sequence_id: str) -> Optional[Sequence]:
        return db.session.get(Sequence, sequence_id)

    def get(self, execution_id: str) -> Optional[SequenceExecution]:
        """Read a record, bypassing any stale copy held by the session."""
        return (
            SequenceExecution.query
            .populate_existing()
            .filter_by(id=execution_id)
            .first()
        )

    def get_or_fail(self, execution_id: str) -> SequenceExecution:
        execution = self.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def find_live(self, sequence_id: str, target_id: str) -> Optional[SequenceExecution]:
        return (
            SequenceExecution.query
            .filter(
                SequenceExecution.sequence_id == sequence_id,
                SequenceExecution.target_id == target_id,
                SequenceExecution.status != 'cancelled'
            )
            .first()
        )

    def get_due_execution_ids(self, now: datetime, limit: int = 100) -> List[str]:
        rows = (
            db.session.query(SequenceExecution.id)
            .filter(
                SequenceExecution.status == 'active',
                SequenceExecution.stalled_at.is_(None),
                SequenceExecution.next_message_due_at.isnot(None),
                SequenceExecution.next_message_due_at <= now
            )
            .order_by(SequenceExecution.next_message_due_at.asc())
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def get_blocked_execution_ids(self, target_id: str) -> List[str]:
        rows = (
            db.session.query(SequenceExecution.id)
            .filter(
                SequenceExecution.target_id == target_id,
                SequenceExecution.status == 'active',
                SequenceExecution.blocked_reason.isnot(None)
            )
            .all()
        )
        return [row.id for row in rows]

    def list_executions(self, sequence_id: Optional[str] = None, status: Optional[str] = None,
                        target_id: Optional[str] = None) -> List[SequenceExecution]:
        query = SequenceExecution.query
        if sequence_id:
            query = query.filter_by(sequence_id=sequence_id)
        if status:
            query = query.filter_by(status=status)
        if target_id:
            query = query.filter_by(target_id=target_id)
        return query.order_by(SequenceExecution.started_at.asc()).all()

    def count_references(self, sequence_id: str) -> int:
        return SequenceExecution.query.filter_by(sequence_id=sequence_id).count()

    # Writes

    def create_execution(self, sequence: Sequence, target_id: str, now: Optional[datetime] = None,
                         customization: Optional[Dict[str, Any]] = None) -> SequenceExecution:
        """Start ``sequence`` for ``target_id``; step 0 is due immediately."""
        now = now or utcnow()
        existing = self.find_live(sequence.id, target_id)
        if existing is not None:
            raise DuplicateExecutionError(sequence.id, target_id, existing.id)

        execution = SequenceExecution(
            sequence_id=sequence.id,
            target_id=target_id,
            current_step_index=0,
            status='active',
            started_at=now,
            next_message_due_at=now,
            completed_steps=[],
            customization=customization or None,
            version=1,
            attempt_count=0,
            updated_at=now,
        )
        db.session.add(execution)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.find_live(sequence.id, target_id)
            raise DuplicateExecutionError(sequence.id, target_id, existing.id if existing else None)

        logger.info(f"Created execution {execution.id} for sequence {sequence.id} and target {target_id}")
        return execution

    def conditional_update(self, execution_id: str, expected_version: int, changes: Dict[str, Any]) -> bool:
        """Apply ``changes`` only if the stored version still equals ``expected_version``."""
        values = dict(changes)
        values['version'] = expected_version + 1
        values.setdefault('updated_at', utcnow())
        updated = (
            db.session.query(SequenceExecution)
            .filter(
                SequenceExecution.id == execution_id,
                SequenceExecution.version == expected_version
            )
            .update(values, synchronize_session=False)
        )
        db.session.commit()
        if updated != 1:
            logger.warning(f"Conditional update conflict on execution {execution_id} (expected version {expected_version})")
            return False
        return True

    def require_update(self, execution_id: str, expected_version: int, changes: Dict[str, Any]) -> None:
        if not self.conditional_update(execution_id, expected_version, changes):
            raise PersistenceConflict(execution_id, expected_version)

    def _run_command(self, execution_id: str, action: str, build_changes) -> SequenceExecution:
        for _ in range(COMMAND_RETRIES):
            execution = self.get_or_fail(execution_id)
            changes = build_changes(execution)
            if changes is None:
                return execution
            if self.conditional_update(execution.id, execution.version, changes):
                logger.info(f"Execution {execution_id}: {action} applied")
                return self.get_or_fail(execution_id)
        raise PersistenceConflict(execution_id, execution.version)

    def pause(self, execution_id: str, now: Optional[datetime] = None) -> SequenceExecution:
        now = now or utcnow()

        def changes(execution):
            if execution.status == 'paused':
                return None
            if execution.status != 'active':
                raise InvalidTransitionError(execution.id, execution.status, 'pause')
            # next_message_due_at is kept and simply not acted on while paused
            return {'status': 'paused', 'paused_at': now}

        return self._run_command(execution_id, 'pause', changes)

    def resume(self, execution_id: str, now: Optional[datetime] = None) -> SequenceExecution:
        def changes(execution):
            if execution.status == 'active':
                return None
            if execution.status != 'paused':
                raise InvalidTransitionError(execution.id, execution.status, 'resume')
            # Original due time is preserved; an overdue record is due on the next tick
            return {'status': 'active', 'paused_at': None}

        return self._run_command(execution_id, 'resume', changes)

    def cancel(self, execution_id: str, now: Optional[datetime] = None, reason: str = 'cancelled_by_operator') -> SequenceExecution:
        now = now or utcnow()

        def changes(execution):
            if execution.status in TERMINAL_STATUSES:
                return None
            return {
                'status': 'cancelled',
                'cancelled_at': now,
                'cancel_reason': reason,
                'next_message_due_at': None,
                'lease_token': None,
                'lease_acquired_at': None,
            }

        return self._run_command(execution_id, 'cancel', changes)

    def retry(self, execution_id: str, now: Optional[datetime] = None) -> SequenceExecution:
        """Clear a stall so the current step is attempted again on the next tick."""
        now = now or utcnow()

        def changes(execution):
            if execution.status != 'active':
                raise InvalidTransitionError(execution.id, execution.status, 'retry')
            if execution.stalled_at is None:
                return None
            return {
                'stalled_at': None,
                'attempt_count': 0,
                'last_error': None,
                'last_error_at': None,
                'next_message_due_at': now,
            }

        return self._run_command(execution_id, 'retry', changes)

    def pause_sequence(self, sequence_id: str, now: Optional[datetime] = None) -> List[SequenceExecution]:
        paused = []
        for execution in self.list_executions(sequence_id=sequence_id, status='active'):
            try:
                paused.append(self.pause(execution.id, now))
            except (InvalidTransitionError, PersistenceConflict) as e:
                logger.warning(f"Could not pause execution {execution.id}: {str(e)}")
        return paused

    def resume_sequence(self, sequence_id: str, now: Optional[datetime] = None) -> List[SequenceExecution]:
        resumed = []
        for execution in self.list_executions(sequence_id=sequence_id, status='paused'):
            try:
                resumed.append(self.resume(execution.id, now))
            except (InvalidTransitionError, PersistenceConflict) as e:
                logger.warning(f"Could not resume execution {execution.id}: {str(e)}")
        return resumed

    # Delivery attempts

    def get_attempt(self, execution_id: str, step_index: int) -> Optional[DeliveryAttempt]:
        return DeliveryAttempt.query.filter_by(
            attempt_key=DeliveryAttempt.key_for(execution_id, step_index)
        ).first()

    def get_or_create_attempt(self, execution_id: str, step_index: int, step_id: str) -> DeliveryAttempt:
        attempt = self.get_attempt(execution_id, step_index)
        if attempt is not None:
            return attempt

        attempt = DeliveryAttempt(
            attempt_key=DeliveryAttempt.key_for(execution_id, step_index),
            execution_id=execution_id,
            step_id=step_id,
            step_index=step_index,
            status='pending',
        )
        db.session.add(attempt)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            attempt = self.get_attempt(execution_id, step_index)
        return attempt

    def mark_attempt_sent(self, attempt: DeliveryAttempt, subject: str, content: str,
                          delivery_id: str, now: Optional[datetime] = None) -> DeliveryAttempt:
        attempt.status = 'sent'
        attempt.subject = subject
        attempt.content = content
        attempt.delivery_id = delivery_id
        attempt.sent_at = now or utcnow()
        db.session.commit()
        return attempt

    def discard_attempt(self, attempt: DeliveryAttempt) -> None:
        if attempt.status != 'discarded':
            attempt.status = 'discarded'
            db.session.commit()
            logger.info(f"Discarded delivery attempt {attempt.attempt_key}")

    def list_attempts(self, execution_id: str) -> List[DeliveryAttempt]:
        return (
            DeliveryAttempt.query
            .filter_by(execution_id=execution_id)
            .order_by(DeliveryAttempt.step_index.asc())
            .all()
        )
