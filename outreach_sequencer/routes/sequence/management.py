"""
Sequence management operations.

This module contains functionality for:
- Executing a sequence over filtered targets
- Starting a sequence for a single target
- Pausing and resuming every execution of a sequence
- Listing a sequence's executions
"""

import logging
from flask import request, jsonify

from outreach_sequencer.services.container import get_services
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/<sequence_id>/execute', methods=['POST'])
@operator_required
def execute_sequence(sequence_id):
    """Start a sequence for every matching target and process step 0 right away.

    Body: ``{"filters": {...}, "customization": {...}, "process_now": true}``.
    Without ``filters`` the sequence targets new prospects.
    """
    data = request.get_json(silent=True) or {}
    services = get_services()

    result = services.orchestrator.start_sequence(
        sequence_id,
        filters=data.get('filters'),
        customization=data.get('customization'),
    )
    response = result.to_dict()
    if data.get('process_now', True):
        response['processed'] = services.orchestrator.run_created(result)

    return jsonify(response), 200


@sequence_bp.route('/sequences/<sequence_id>/targets/<target_id>', methods=['POST'])
@operator_required
def start_sequence_for_target(sequence_id, target_id):
    data = request.get_json(silent=True) or {}
    execution = get_services().orchestrator.start_for_target(
        sequence_id, target_id, customization=data.get('customization')
    )
    return jsonify({
        'message': 'Execution created successfully',
        'execution': execution.to_dict()
    }), 201


@sequence_bp.route('/sequences/<sequence_id>/pause', methods=['POST'])
@operator_required
def pause_sequence(sequence_id):
    """Mark a sequence inactive and pause all of its active executions."""
    services = get_services()
    sequence = services.sequences.set_active(sequence_id, False)
    paused = services.store.pause_sequence(sequence.id)

    logger.info(f"Paused sequence {sequence.id} ({len(paused)} executions)")
    return jsonify({
        'message': 'Sequence paused successfully',
        'sequence': sequence.to_dict(),
        'paused_executions': len(paused)
    }), 200


@sequence_bp.route('/sequences/<sequence_id>/resume', methods=['POST'])
@operator_required
def resume_sequence(sequence_id):
    services = get_services()
    sequence = services.sequences.set_active(sequence_id, True)
    resumed = services.store.resume_sequence(sequence.id)

    logger.info(f"Resumed sequence {sequence.id} ({len(resumed)} executions)")
    return jsonify({
        'message': 'Sequence resumed successfully',
        'sequence': sequence.to_dict(),
        'resumed_executions': len(resumed)
    }), 200


@sequence_bp.route('/sequences/<sequence_id>/executions', methods=['GET'])
@operator_required
def list_sequence_executions(sequence_id):
    services = get_services()
    sequence = services.sequences.get_or_fail(sequence_id)

    status = request.args.get('status')
    if status and status not in ('active', 'paused', 'completed', 'cancelled'):
        return handle_validation_error(f"Unknown status '{status}'")

    executions = services.store.list_executions(sequence_id=sequence.id, status=status)
    return jsonify({
        'sequence_id': sequence.id,
        'executions': [execution.to_dict() for execution in executions],
        'total': len(executions)
    }), 200
