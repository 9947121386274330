"""
Execution record endpoints.

This module contains functionality for:
- Listing and inspecting execution records and their delivery attempts
- Pause, resume, cancel and retry commands
- Processing one record on demand
"""

import logging
from flask import Blueprint, request, jsonify

from outreach_sequencer.models import EXECUTION_STATUSES
from outreach_sequencer.services.container import get_services
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error

logger = logging.getLogger(__name__)

execution_bp = Blueprint('execution', __name__)


def _execution_payload(services, execution):
    data = execution.to_dict()
    sequence = services.store.get_sequence(execution.sequence_id)
    if sequence is not None:
        data['total_steps'] = sequence.total_steps
        data['invariant_violations'] = execution.check_invariants(sequence.total_steps)
    return data


@execution_bp.route('/executions', methods=['GET'])
@operator_required
def list_executions():
    status = request.args.get('status')
    if status and status not in EXECUTION_STATUSES:
        return handle_validation_error(f"Unknown status '{status}'")

    executions = get_services().store.list_executions(
        sequence_id=request.args.get('sequence_id'),
        status=status,
        target_id=request.args.get('target_id'),
    )
    if request.args.get('stalled', '').lower() == 'true':
        executions = [execution for execution in executions if execution.is_stalled]

    return jsonify({
        'executions': [execution.to_dict() for execution in executions],
        'total': len(executions)
    }), 200


@execution_bp.route('/executions/<execution_id>', methods=['GET'])
@operator_required
def get_execution(execution_id):
    services = get_services()
    execution = services.store.get_or_fail(execution_id)
    return jsonify(_execution_payload(services, execution)), 200


@execution_bp.route('/executions/<execution_id>/attempts', methods=['GET'])
@operator_required
def list_execution_attempts(execution_id):
    services = get_services()
    execution = services.store.get_or_fail(execution_id)
    attempts = services.store.list_attempts(execution.id)
    return jsonify({
        'execution_id': execution.id,
        'attempts': [attempt.to_dict() for attempt in attempts]
    }), 200


@execution_bp.route('/executions/<execution_id>/pause', methods=['POST'])
@operator_required
def pause_execution(execution_id):
    services = get_services()
    execution = services.store.pause(execution_id)
    return jsonify({
        'message': 'Execution paused',
        'execution': execution.to_dict()
    }), 200


@execution_bp.route('/executions/<execution_id>/resume', methods=['POST'])
@operator_required
def resume_execution(execution_id):
    """Resume a paused execution; its original due time is kept."""
    services = get_services()
    execution = services.store.resume(execution_id)
    return jsonify({
        'message': 'Execution resumed',
        'execution': execution.to_dict()
    }), 200


@execution_bp.route('/executions/<execution_id>/cancel', methods=['POST'])
@operator_required
def cancel_execution(execution_id):
    """Cancel an execution. Cancelling a finished execution is a no-op."""
    data = request.get_json(silent=True) or {}
    services = get_services()
    execution = services.store.cancel(execution_id, reason=data.get('reason') or 'cancelled_by_operator')
    return jsonify({
        'message': 'Execution cancelled' if execution.status == 'cancelled' else f"Execution already {execution.status}",
        'execution': execution.to_dict()
    }), 200


@execution_bp.route('/executions/<execution_id>/retry', methods=['POST'])
@operator_required
def retry_execution(execution_id):
    """Clear a stall so the current step is attempted on the next tick."""
    services = get_services()
    execution = services.store.retry(execution_id)
    return jsonify({
        'message': 'Execution scheduled for retry',
        'execution': execution.to_dict()
    }), 200


@execution_bp.route('/executions/<execution_id>/process', methods=['POST'])
@operator_required
def process_execution(execution_id):
    """Run the engine on one execution now. Records that are not due are left alone."""
    services = get_services()
    services.store.get_or_fail(execution_id)
    result = services.engine.process_execution(execution_id)
    execution = services.store.get_or_fail(execution_id)
    return jsonify({
        'result': result.to_dict(),
        'execution': execution.to_dict()
    }), 200
