"""
Basic CRUD operations for sequences.

This module contains functionality for:
- Listing and creating sequences
- Getting a sequence with its execution counts
- Updating sequence metadata and (while unreferenced) steps
"""

import logging
from flask import request, jsonify

from outreach_sequencer.services.container import get_services
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences', methods=['GET'])
@operator_required
def list_sequences():
    """List sequence definitions, optionally only active ones."""
    active_param = request.args.get('active')
    active = None
    if active_param is not None:
        active = active_param.lower() == 'true'

    sequences = get_services().sequences.list_sequences(active)
    return jsonify({
        'sequences': [sequence.to_dict() for sequence in sequences],
        'total': len(sequences)
    }), 200


@sequence_bp.route('/sequences', methods=['POST'])
@operator_required
def create_sequence():
    """Create a sequence definition; steps are validated before anything is stored."""
    data = request.get_json(silent=True)
    if not data:
        return handle_validation_error("Request body must be a JSON object")

    sequence, warnings = get_services().sequences.create_sequence(data)
    return jsonify({
        'message': 'Sequence created successfully',
        'sequence': sequence.to_dict(),
        'warnings': warnings
    }), 201


@sequence_bp.route('/sequences/<sequence_id>', methods=['GET'])
@operator_required
def get_sequence(sequence_id):
    services = get_services()
    sequence = services.sequences.get_or_fail(sequence_id)

    counts = {}
    for execution in services.store.list_executions(sequence_id=sequence.id):
        counts[execution.status] = counts.get(execution.status, 0) + 1

    result = sequence.to_dict()
    result['execution_counts'] = counts
    return jsonify(result), 200


@sequence_bp.route('/sequences/<sequence_id>', methods=['PUT', 'PATCH'])
@operator_required
def update_sequence(sequence_id):
    """Update a sequence. Replacing steps is refused once any execution references it."""
    data = request.get_json(silent=True)
    if not data:
        return handle_validation_error("Request body must be a JSON object")

    sequence, warnings = get_services().sequences.update_sequence(sequence_id, data)
    return jsonify({
        'message': 'Sequence updated successfully',
        'sequence': sequence.to_dict(),
        'warnings': warnings
    }), 200
