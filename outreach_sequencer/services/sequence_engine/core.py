"""
Core sequence engine functionality.

This module contains the SequenceEngine, which advances one execution record
at a time through its sequence:
- Due and lease checks
- Condition gating with deferral
- Generation and send behind an attempt marker
- Completion, retry backoff and stalling
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from outreach_sequencer.extensions import db
from outreach_sequencer.exceptions import GenerationError, GenerationTimeout, PersistenceConflict, SendError
from outreach_sequencer.models import Prospect, SequenceExecution
from outreach_sequencer.models.sequence import SequenceStep, TONES
from outreach_sequencer.services.engagement import apply_reply_signals, compute_engagement_score
from outreach_sequencer.services.sequence_engine.conditions import evaluate_conditions
from outreach_sequencer.services.sequence_engine.delay_calculator import (
    condition_recheck_at, condition_timed_out, next_due_at, retry_backoff
)
from outreach_sequencer.services.sequence_engine.message_formatter import build_target_context
from outreach_sequencer.utils.time_utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

# Example sequence definition (stored step shape)
EXAMPLE_SEQUENCE = [
    {
        "id": "intro",
        "messageType": "initial",
        "tone": "friendly",
        "delayDays": 0,
        "template": "Hi {{first_name}}, I noticed {{company_name}} is growing its support team. Would a quick chat about faster ticket resolution be useful?"
    },
    {
        "id": "value",
        "messageType": "followup",
        "tone": "friendly",
        "delayDays": 3,
        "template": "Hi {{first_name}}, following up with a short case study on how teams like {{company_name}} cut response times in half."
    },
    {
        "id": "proposal",
        "messageType": "proposal",
        "tone": "formal",
        "delayDays": 4,
        "template": "Hi {{first_name}}, thanks for getting back to me. Here is a proposal tailored to {{company_name}}.",
        "conditions": {"requiresPreviousResponse": True}
    },
    {
        "id": "check-in",
        "messageType": "check_in",
        "tone": "casual",
        "delayDays": 7,
        "template": "Hi {{first_name}}, just checking in on the proposal. Happy to answer any questions.",
        "conditions": {"requiresPreviousResponse": False, "minimumEngagementScore": 0.3}
    }
]


@dataclass
class ProcessResult:
    execution_id: str
    outcome: str
    # Outcomes: processed, completed, deferred, failed, stalled, cancelled, discarded,
    # skipped, not_due, locked, conflict, missing
    step_index: Optional[int] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'execution_id': self.execution_id,
            'outcome': self.outcome,
            'step_index': self.step_index,
            'detail': self.detail
        }


class SequenceEngine:
    """Engine for advancing outreach execution records through their sequences."""

    def __init__(self, store, generator, channel, engagement_source, notifier=None, *,
                 max_retries: int = 5, backoff_base_seconds: int = 300, backoff_max_seconds: int = 21600,
                 condition_recheck_hours: float = 12.0, condition_timeout_days: Optional[float] = None,
                 engagement_half_life_days: float = 14.0, generation_timeout_seconds: float = 30.0,
                 lease_seconds: int = 300):
        self.store = store
        self.generator = generator
        self.channel = channel
        self.engagement_source = engagement_source
        self.notifier = notifier

        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.condition_recheck_hours = condition_recheck_hours
        self.condition_timeout_days = condition_timeout_days
        self.engagement_half_life_days = engagement_half_life_days
        self.generation_timeout_seconds = generation_timeout_seconds
        self.lease_seconds = lease_seconds

        self._generation_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix='message-generator')

    @classmethod
    def from_config(cls, config, store, generator, channel, engagement_source, notifier=None):
        return cls(
            store, generator, channel, engagement_source, notifier,
            max_retries=config.get('MAX_STEP_RETRIES', 5),
            backoff_base_seconds=config.get('RETRY_BACKOFF_BASE_SECONDS', 300),
            backoff_max_seconds=config.get('RETRY_BACKOFF_MAX_SECONDS', 21600),
            condition_recheck_hours=config.get('CONDITION_RECHECK_HOURS', 12.0),
            condition_timeout_days=config.get('CONDITION_TIMEOUT_DAYS'),
            engagement_half_life_days=config.get('ENGAGEMENT_HALF_LIFE_DAYS', 14.0),
            generation_timeout_seconds=config.get('GENERATION_TIMEOUT_SECONDS', 30.0),
            lease_seconds=config.get('EXECUTION_LEASE_SECONDS', 300),
        )

    def shutdown(self):
        self._generation_pool.shutdown(wait=False)

    # Entry points

    def process_execution(self, execution_id: str, now: Optional[datetime] = None, force: bool = False) -> ProcessResult:
        """Process the current step of one execution if it is due.

        ``force`` re-evaluates a condition-gated record before its re-check time.
        A write conflict re-reads the record and retries the whole attempt once.
        """
        now = now or utcnow()
        lease_token = str(uuid.uuid4())
        try:
            return self._process_once(execution_id, now, lease_token, force)
        except PersistenceConflict:
            logger.info(f"Conflict while processing execution {execution_id}; re-reading and retrying once")

        try:
            return self._process_once(execution_id, now, lease_token, force)
        except PersistenceConflict:
            logger.warning(f"Repeated conflict on execution {execution_id}; leaving it for the next tick")
            return ProcessResult(execution_id, 'conflict')

    def reevaluate_target(self, target_id: str, now: Optional[datetime] = None) -> List[ProcessResult]:
        """Re-check gated executions of a target after new engagement arrives."""
        results = []
        for execution_id in self.store.get_blocked_execution_ids(target_id):
            try:
                results.append(self.process_execution(execution_id, now, force=True))
            except Exception as e:
                logger.error(f"Error re-evaluating execution {execution_id}: {str(e)}")
                db.session.rollback()
        return results

    # Step processing

    def _process_once(self, execution_id: str, now: datetime, lease_token: str, force: bool) -> ProcessResult:
        execution = self.store.get(execution_id)
        if execution is None:
            return ProcessResult(execution_id, 'missing')

        index = execution.current_step_index
        if execution.status != 'active':
            if execution.status == 'cancelled':
                attempt = self.store.get_attempt(execution.id, index)
                if attempt is not None and attempt.status != 'discarded':
                    self.store.discard_attempt(attempt)
            self._release_lease(execution, lease_token)
            return ProcessResult(execution_id, 'skipped', index, f"status is {execution.status}")

        if execution.stalled_at is not None:
            return ProcessResult(execution_id, 'skipped', index, 'stalled')

        owns_lease = execution.lease_token == lease_token
        if not owns_lease:
            if self._lease_active(execution, now):
                return ProcessResult(execution_id, 'locked', index)
            reevaluating = force and execution.blocked_reason is not None
            if not reevaluating and (execution.next_message_due_at is None or execution.next_message_due_at > now):
                return ProcessResult(execution_id, 'not_due', index)

        sequence = self.store.get_sequence(execution.sequence_id)
        if sequence is None:
            return self._stall(execution, execution.version, now, f"Sequence {execution.sequence_id} no longer exists")

        steps = sequence.steps
        if index >= len(steps):
            return self._close_overrun(execution, len(steps), now)
        step = steps[index]

        signals = self.engagement_source.get_events(execution.target_id)
        completed = apply_reply_signals(execution.completed_steps or [], signals)
        score = compute_engagement_score(signals, now, self.engagement_half_life_days)

        if owns_lease:
            version = execution.version
        else:
            # A step already delivered before a pause or conflict is not gated again
            previous_attempt = self.store.get_attempt(execution_id, index)
            if previous_attempt is None or previous_attempt.status != 'sent':
                result = evaluate_conditions(step, completed, score)
                if not result.passed:
                    return self._defer(execution, completed, result.reason, now)

            # Read before the claim commits; commit expires the instance
            claimed_from = execution.version
            self.store.require_update(execution.id, claimed_from, {
                'lease_token': lease_token,
                'lease_acquired_at': now,
                'completed_steps': completed,
                'blocked_reason': None,
                'blocked_since': None,
            })
            version = claimed_from + 1
            logger.info(f"Claimed execution {execution_id} for step {index} ({step.message_type})")

        customization = execution.customization
        target_id = execution.target_id
        previous_attempts = execution.attempt_count or 0

        attempt = self.store.get_or_create_attempt(execution_id, index, step.id)
        if attempt.status != 'sent':
            prospect = db.session.get(Prospect, target_id)
            context = build_target_context(prospect, customization, score, len(completed))
            effective_step = self._apply_overrides(step, customization)
            try:
                message = self._generate(effective_step, context)
                receipt = self.channel.send(target_id, message, context, attempt.attempt_key)
            except (GenerationError, SendError) as e:
                return self._handle_failure(execution_id, version, previous_attempts, index, e, now, sequence)
            attempt = self.store.mark_attempt_sent(attempt, message.subject, message.content, receipt.delivery_id, now)
            logger.info(f"Sent step {index} of execution {execution_id} (delivery {receipt.delivery_id})")
        else:
            logger.info(f"Step {index} of execution {execution_id} already sent; recording completion only")

        current = self.store.get(execution_id)
        if current is None or current.status == 'cancelled':
            self.store.discard_attempt(attempt)
            logger.info(f"Execution {execution_id} was cancelled mid-flight; result discarded")
            return ProcessResult(execution_id, 'discarded', index)
        if current.version != version:
            raise PersistenceConflict(execution_id, version)

        return self._complete_step(execution_id, version, completed, steps, index, attempt, now, customization)

    def _complete_step(self, execution_id: str, version: int, completed: List[dict], steps: List[SequenceStep],
                       index: int, attempt, now: datetime, customization) -> ProcessResult:
        completed_at = now
        if completed:
            previous = parse_timestamp(completed[-1].get('completedAt'))
            if previous is not None and previous > completed_at:
                completed_at = previous

        entry = {
            'stepId': steps[index].id,
            'completedAt': completed_at.isoformat(),
            'deliveryId': attempt.delivery_id,
            'response': {'received': False},
        }
        next_index = index + 1
        changes = {
            'completed_steps': completed + [entry],
            'current_step_index': next_index,
            'attempt_count': 0,
            'last_error': None,
            'last_error_at': None,
            'lease_token': None,
            'lease_acquired_at': None,
            'blocked_reason': None,
            'blocked_since': None,
        }

        finished = next_index >= len(steps)
        if finished:
            changes.update({'status': 'completed', 'next_message_due_at': None, 'completed_at': completed_at})
        else:
            changes['next_message_due_at'] = next_due_at(completed_at, steps[next_index], next_index, customization)

        self.store.require_update(execution_id, version, changes)

        if finished:
            logger.info(f"Execution {execution_id} completed all {len(steps)} steps")
            return ProcessResult(execution_id, 'completed', index)
        logger.info(f"Execution {execution_id} advanced to step {next_index}, due {changes['next_message_due_at'].isoformat()}")
        return ProcessResult(execution_id, 'processed', index)

    def _defer(self, execution: SequenceExecution, completed: List[dict], reason: str, now: datetime) -> ProcessResult:
        blocked_since = execution.blocked_since or now
        index = execution.current_step_index

        if condition_timed_out(blocked_since, now, self.condition_timeout_days):
            self.store.require_update(execution.id, execution.version, {
                'completed_steps': completed,
                'status': 'cancelled',
                'cancel_reason': 'condition_timeout',
                'cancelled_at': now,
                'next_message_due_at': None,
                'blocked_reason': reason,
            })
            logger.warning(f"Execution {execution.id} cancelled: step {index} gated ({reason}) since {blocked_since.isoformat()}")
            return ProcessResult(execution.id, 'cancelled', index, 'condition_timeout')

        recheck = condition_recheck_at(now, self.condition_recheck_hours)
        self.store.require_update(execution.id, execution.version, {
            'completed_steps': completed,
            'blocked_reason': reason,
            'blocked_since': blocked_since,
            'next_message_due_at': recheck,
        })
        logger.info(f"Execution {execution.id} step {index} deferred ({reason}); re-check at {recheck.isoformat()}")
        return ProcessResult(execution.id, 'deferred', index, reason)

    def _handle_failure(self, execution_id: str, version: int, previous_attempts: int, index: int,
                        error: Exception, now: datetime, sequence) -> ProcessResult:
        attempts = previous_attempts + 1
        message = f"{type(error).__name__}: {str(error)}"
        changes = {
            'attempt_count': attempts,
            'last_error': message,
            'last_error_at': now,
            'lease_token': None,
            'lease_acquired_at': None,
        }

        stalled = attempts >= self.max_retries
        if stalled:
            changes.update({'stalled_at': now, 'next_message_due_at': None})
        else:
            changes['next_message_due_at'] = now + retry_backoff(
                attempts, self.backoff_base_seconds, self.backoff_max_seconds
            )

        self.store.require_update(execution_id, version, changes)

        if stalled:
            logger.error(f"Execution {execution_id} stalled at step {index} after {attempts} failures: {message}")
            self._notify_stall(execution_id, sequence, message)
            return ProcessResult(execution_id, 'stalled', index, message)

        logger.warning(
            f"Step {index} of execution {execution_id} failed (attempt {attempts}/{self.max_retries}); "
            f"retrying at {changes['next_message_due_at'].isoformat()}: {message}"
        )
        return ProcessResult(execution_id, 'failed', index, message)

    def _stall(self, execution: SequenceExecution, version: int, now: datetime, message: str) -> ProcessResult:
        self.store.require_update(execution.id, version, {
            'stalled_at': now,
            'last_error': message,
            'last_error_at': now,
            'next_message_due_at': None,
            'lease_token': None,
            'lease_acquired_at': None,
        })
        logger.error(f"Execution {execution.id} stalled: {message}")
        self._notify_stall(execution.id, None, message)
        return ProcessResult(execution.id, 'stalled', execution.current_step_index, message)

    def _close_overrun(self, execution: SequenceExecution, total_steps: int, now: datetime) -> ProcessResult:
        if execution.current_step_index == total_steps and len(execution.completed_steps or []) == total_steps:
            self.store.require_update(execution.id, execution.version, {
                'status': 'completed',
                'completed_at': now,
                'next_message_due_at': None,
                'lease_token': None,
                'lease_acquired_at': None,
            })
            return ProcessResult(execution.id, 'completed', execution.current_step_index)
        return self._stall(
            execution, execution.version, now,
            f"current_step_index {execution.current_step_index} is beyond the {total_steps} sequence steps"
        )

    # Helpers

    def _generate(self, step: SequenceStep, context):
        future = self._generation_pool.submit(self.generator.generate, step, context)
        try:
            return future.result(timeout=self.generation_timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            raise GenerationTimeout(f"Message generation exceeded {self.generation_timeout_seconds}s")
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Message generator raised {type(e).__name__}: {str(e)}") from e

    def _apply_overrides(self, step: SequenceStep, customization) -> SequenceStep:
        tone = ((customization or {}).get('overrides') or {}).get('tone')
        if tone in TONES and tone != step.tone:
            return replace(step, tone=tone)
        return step

    def _lease_active(self, execution: SequenceExecution, now: datetime) -> bool:
        if not execution.lease_token or execution.lease_acquired_at is None:
            return False
        return now - execution.lease_acquired_at < timedelta(seconds=self.lease_seconds)

    def _release_lease(self, execution: SequenceExecution, lease_token: str) -> None:
        if execution.lease_token == lease_token:
            self.store.conditional_update(execution.id, execution.version, {
                'lease_token': None,
                'lease_acquired_at': None,
            })

    def _notify_stall(self, execution_id: str, sequence, message: str) -> None:
        if self.notifier is None:
            return
        execution = self.store.get(execution_id)
        if execution is not None:
            self.notifier.send_stall_notification(execution, sequence, message)
