"""
Core scheduler functionality.

This module contains the scheduler that drives the sequence engine:
- SequenceScheduler class
- One-shot ticks over due execution records
- Background thread lifecycle
"""

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach_sequencer.extensions import db
from outreach_sequencer.services.sequence_engine import ProcessResult
from outreach_sequencer.utils.time_utils import isoformat, utcnow

logger = logging.getLogger(__name__)


class SequenceScheduler:
    """Finds due execution records and hands each one to the sequence engine."""

    def __init__(self, engine, store, app=None, batch_size: int = 100, workers: int = 1,
                 interval_seconds: int = 300):
        self.engine = engine
        self.store = store
        self.app = app
        self.batch_size = batch_size
        self.workers = max(1, workers)
        self.interval_seconds = interval_seconds

        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self.last_tick: Optional[Dict[str, Any]] = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize the scheduler with the Flask app."""
        self.app = app
        self.batch_size = app.config.get('SCHEDULER_BATCH_SIZE', self.batch_size)
        self.workers = max(1, app.config.get('SCHEDULER_WORKERS', self.workers))
        self.interval_seconds = app.config.get('SCHEDULER_INTERVAL_SECONDS', self.interval_seconds)
        logger.info(f"Scheduler initialized (batch size {self.batch_size}, {self.workers} worker(s))")

    def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Process every record that is due at ``now``.

        A failure on one record is logged and never stops the rest of the batch.
        """
        now = now or utcnow()
        with self._tick_lock:
            due_ids = self.store.get_due_execution_ids(now, self.batch_size)
            logger.info(f"Scheduler tick at {now.isoformat()}: {len(due_ids)} due execution(s)")

            if self.workers > 1 and len(due_ids) > 1:
                results = self._process_parallel(due_ids, now)
            else:
                results = [self._process_one(execution_id, now) for execution_id in due_ids]

            outcomes = Counter(result.outcome for result in results)
            summary = {
                'ran_at': isoformat(now),
                'due': len(due_ids),
                'outcomes': dict(outcomes),
                'results': [result.to_dict() for result in results],
            }
            self.last_tick = summary
            logger.info(f"Scheduler tick finished: {dict(outcomes)}")
            return summary

    def _process_one(self, execution_id: str, now: datetime) -> ProcessResult:
        try:
            return self.engine.process_execution(execution_id, now)
        except Exception as e:
            logger.error(f"Error processing execution {execution_id}: {str(e)}")
            db.session.rollback()
            self._notify_error(execution_id, e)
            return ProcessResult(execution_id, 'error', detail=str(e))

    def _notify_error(self, execution_id: str, error: Exception) -> None:
        notifier = self.engine.notifier
        if notifier is None:
            return
        notifier.send_error_notification(
            'ExecutionProcessingError',
            f"{type(error).__name__}: {str(error)}",
            {'execution_id': execution_id},
        )

    def _process_in_context(self, execution_id: str, now: datetime) -> ProcessResult:
        with self.app.app_context():
            return self._process_one(execution_id, now)

    def _process_parallel(self, due_ids: List[str], now: datetime) -> List[ProcessResult]:
        # Each worker gets its own app context and therefore its own session
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix='sequence-worker') as pool:
            futures = [pool.submit(self._process_in_context, execution_id, now) for execution_id in due_ids]
            return [future.result() for future in futures]

    # Background thread

    def start(self):
        """Start the background processing thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._process_loop, daemon=True, name='sequence-scheduler')
        self.thread.start()
        logger.info("Sequence scheduler started successfully")

    def stop(self, timeout: float = 30.0):
        """Stop the background processing thread."""
        if not self.running:
            logger.info("Scheduler is already stopped")
            return

        logger.info("Stopping scheduler...")
        self.running = False
        self._stop_event.set()

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning(f"Scheduler thread did not terminate within {timeout} seconds")

        logger.info("Scheduler stopped")

    def _process_loop(self):
        """Main processing loop for the scheduler."""
        logger.info("Starting scheduler processing loop")

        while self.running:
            try:
                with self.app.app_context():
                    self.tick()
            except Exception as e:
                logger.error(f"Error in scheduler processing loop: {str(e)}")

            if self._stop_event.wait(self.interval_seconds):
                break

        logger.info("Scheduler processing loop ended")

    def status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'thread_alive': bool(self.thread and self.thread.is_alive()),
            'batch_size': self.batch_size,
            'workers': self.workers,
            'interval_seconds': self.interval_seconds,
            'last_tick': self.last_tick,
        }
