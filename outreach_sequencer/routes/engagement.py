"""
Engagement event ingestion and scoring endpoints.
"""

import logging
from flask import Blueprint, request, jsonify, current_app

from outreach_sequencer.models import ENGAGEMENT_EVENT_TYPES
from outreach_sequencer.services.container import get_services
from outreach_sequencer.services.engagement import compute_engagement_score
from outreach_sequencer.utils.auth import operator_required
from outreach_sequencer.utils.error_handling import handle_validation_error, validate_required_fields
from outreach_sequencer.utils.time_utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

engagement_bp = Blueprint('engagement', __name__)


@engagement_bp.route('/engagement/events', methods=['POST'])
@operator_required
def record_engagement_event():
    """Store an engagement event and re-check the target's gated executions.

    Body: ``{"target_id", "type", "timestamp"?, "sentiment"?, "metadata"?}``.
    """
    data = request.get_json(silent=True) or {}
    error = validate_required_fields(data, ['target_id', 'type'])
    if error:
        return error

    event_type = data['type']
    if event_type not in ENGAGEMENT_EVENT_TYPES:
        return handle_validation_error(
            f"type must be one of: {', '.join(ENGAGEMENT_EVENT_TYPES)}",
            {'allowed_types': list(ENGAGEMENT_EVENT_TYPES)}
        )

    timestamp = None
    if data.get('timestamp'):
        try:
            timestamp = parse_timestamp(data['timestamp'])
        except ValueError:
            return handle_validation_error("timestamp must be an ISO 8601 datetime")

    services = get_services()
    event = services.engagement.record_event(
        str(data['target_id']),
        event_type,
        timestamp=timestamp,
        sentiment=data.get('sentiment'),
        meta=data.get('metadata'),
    )
    results = services.engine.reevaluate_target(event.target_id)

    return jsonify({
        'message': 'Engagement event recorded',
        'event': event.to_dict(),
        'reevaluated': [result.to_dict() for result in results]
    }), 201


@engagement_bp.route('/targets/<target_id>/engagement', methods=['GET'])
@operator_required
def get_target_engagement(target_id):
    services = get_services()
    signals = services.engagement.get_events(target_id)
    now = utcnow()
    score = compute_engagement_score(signals, now, current_app.config.get('ENGAGEMENT_HALF_LIFE_DAYS', 14.0))

    return jsonify({
        'target_id': target_id,
        'engagement_score': round(score, 4),
        'computed_at': now.isoformat(),
        'events': [
            {
                'type': signal.event_type,
                'timestamp': signal.timestamp.isoformat(),
                'sentiment': signal.sentiment
            }
            for signal in signals
        ]
    }), 200
