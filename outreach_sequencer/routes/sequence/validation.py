"""
Sequence validation and drafting.

This module contains functionality for:
- Validating step lists without saving them
- Getting the example sequence
- Drafting a sequence with the LLM
"""

import logging
from flask import request, jsonify

from outreach_sequencer.exceptions import InvalidSequenceDefinition
from outreach_sequencer.services.container import get_services
from outreach_sequencer.services.sequence_engine import EXAMPLE_SEQUENCE
from outreach_sequencer.services.sequence_engine.validation import normalize_steps
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/validate', methods=['POST'])
@operator_required
def validate_sequence():
    """Validate a step list and return the normalized steps."""
    data = request.get_json(silent=True)
    if not data or 'steps' not in data:
        return handle_validation_error("steps is required")

    try:
        steps, warnings = normalize_steps(data['steps'])
    except InvalidSequenceDefinition as e:
        return jsonify({
            'valid': False,
            'errors': e.errors,
            'warnings': []
        }), 200

    return jsonify({
        'valid': True,
        'errors': [],
        'warnings': warnings,
        'steps': steps
    }), 200


@sequence_bp.route('/sequences/example', methods=['GET'])
@operator_required
def get_example_sequence():
    """Get an example sequence definition."""
    steps, _ = normalize_steps(EXAMPLE_SEQUENCE)
    return jsonify({
        'example_sequence': steps,
        'description': 'Example 4-step outreach sequence with response and engagement gating'
    }), 200


@sequence_bp.route('/sequences/draft', methods=['POST'])
@operator_required
def draft_sequence():
    """Draft a five-step sequence from a description. The draft is not saved."""
    data = request.get_json(silent=True) or {}
    description = data.get('description')
    if not description:
        return handle_validation_error("description is required")

    draft = get_services().drafts.draft(description, data.get('name'))
    return jsonify({'draft': draft}), 200
