"""
Scheduler management endpoints.

This module contains functionality for:
- Scheduler status checking
- Running a single tick on demand (the cron entry point)
- Starting and stopping the background loop
"""

import logging
from flask import jsonify, request

from outreach_sequencer.services.container import get_services
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error
from outreach_sequencer.utils.time_utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import automation_bp


@automation_bp.route('/scheduler/status', methods=['GET'])
@operator_required
def get_scheduler_status():
    """Get the current status of the sequence scheduler."""
    services = get_services()
    status = services.scheduler.status()
    status['due_now'] = len(services.store.get_due_execution_ids(utcnow(), services.scheduler.batch_size))
    return jsonify(status), 200


@automation_bp.route('/scheduler/tick', methods=['POST'])
@operator_required
def run_scheduler_tick():
    """Process every due execution once.

    An optional ``now`` (ISO 8601) in the body evaluates due times at that instant.
    """
    data = request.get_json(silent=True) or {}
    try:
        now = parse_timestamp(data.get('now'))
    except ValueError:
        return handle_validation_error("now must be an ISO 8601 datetime")

    summary = get_services().scheduler.tick(now)
    return jsonify(summary), 200


@automation_bp.route('/scheduler/start', methods=['POST'])
@operator_required
def start_scheduler():
    """Start the background scheduler loop."""
    scheduler = get_services().scheduler
    if scheduler.running:
        return jsonify({'message': 'Scheduler is already running', 'status': 'running'}), 200

    scheduler.start()
    return jsonify({
        'message': 'Scheduler started successfully',
        'status': 'running'
    }), 200


@automation_bp.route('/scheduler/stop', methods=['POST'])
@operator_required
def stop_scheduler():
    """Stop the background scheduler loop."""
    scheduler = get_services().scheduler
    if not scheduler.running:
        return jsonify({'message': 'Scheduler is already stopped', 'status': 'stopped'}), 200

    scheduler.stop()
    return jsonify({
        'message': 'Scheduler stopped successfully',
        'status': 'stopped'
    }), 200
