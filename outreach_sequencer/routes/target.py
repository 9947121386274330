"""
Basic CRUD operations for targets (prospects).

This module contains the core CRUD endpoints:
- Create target
- List targets
- Get target details
- Update target
"""

import logging
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from outreach_sequencer.extensions import db
from outreach_sequencer.models import Prospect
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import (
    handle_database_error,
    handle_not_found_error,
    handle_validation_error,
)
from outreach_sequencer.utils.time_utils import parse_timestamp

logger = logging.getLogger(__name__)

target_bp = Blueprint('target', __name__)

EDITABLE_FIELDS = ('name', 'first_name', 'last_name', 'email', 'company_name', 'status', 'category', 'priority')


def _apply_fields(prospect, data):
    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(prospect, field, data[field])
    if 'tags' in data:
        tags = data['tags'] or []
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise ValueError("tags must be a list of strings")
        prospect.tags = tags
    if 'last_contact_at' in data:
        prospect.last_contact_at = parse_timestamp(data['last_contact_at'])


@target_bp.route('/targets', methods=['POST'])
@operator_required
def create_target():
    """Create a new target."""
    data = request.get_json(silent=True)
    if not data:
        return handle_validation_error("Request body must be a JSON object")
    if not any(data.get(field) for field in ('name', 'first_name', 'last_name', 'email')):
        return handle_validation_error("One of name, first_name, last_name or email is required")

    prospect = Prospect()
    if data.get('id'):
        prospect.id = str(data['id'])
    try:
        _apply_fields(prospect, data)
    except ValueError as e:
        return handle_validation_error(str(e))

    try:
        db.session.add(prospect)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return handle_database_error(e, "target creation")

    return jsonify({
        'message': 'Target created successfully',
        'target': prospect.to_dict()
    }), 201


@target_bp.route('/targets', methods=['GET'])
@operator_required
def list_targets():
    """List targets, filtered by status, category and priority."""
    query = Prospect.query
    for field in ('status', 'category', 'priority'):
        value = request.args.get(field)
        if value:
            query = query.filter(getattr(Prospect, field) == value)

    prospects = query.order_by(Prospect.created_at.asc()).all()
    return jsonify({
        'targets': [prospect.to_dict() for prospect in prospects],
        'total': len(prospects)
    }), 200


@target_bp.route('/targets/<target_id>', methods=['GET'])
@operator_required
def get_target(target_id):
    prospect = db.session.get(Prospect, target_id)
    if prospect is None:
        return handle_not_found_error("Target", target_id)
    return jsonify(prospect.to_dict()), 200


@target_bp.route('/targets/<target_id>', methods=['PUT', 'PATCH'])
@operator_required
def update_target(target_id):
    prospect = db.session.get(Prospect, target_id)
    if prospect is None:
        return handle_not_found_error("Target", target_id)

    data = request.get_json(silent=True) or {}
    try:
        _apply_fields(prospect, data)
    except ValueError as e:
        db.session.rollback()
        return handle_validation_error(str(e))

    db.session.commit()
    return jsonify({
        'message': 'Target updated successfully',
        'target': prospect.to_dict()
    }), 200
