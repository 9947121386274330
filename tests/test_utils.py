"""
Unit tests for Utility Functions.

This module tests the error response helpers, the operator auth decorator
and the time helpers.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from flask_jwt_extended import create_access_token
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from outreach_sequencer.utils.error_handling import (
    ERROR_CODES,
    STATUS_CODES,
    create_error_response,
    handle_exception,
    validate_required_fields,
)
from outreach_sequencer.utils.time_utils import isoformat, parse_timestamp, to_naive_utc


class TestErrorCodes:
    """Test error code constants."""

    def test_error_codes_structure(self):
        """Test that error codes are properly structured."""
        for code in ('VALIDATION_ERROR', 'NOT_FOUND', 'UNAUTHORIZED', 'INTERNAL_ERROR',
                     'INVALID_SEQUENCE', 'DUPLICATE_EXECUTION', 'PERSISTENCE_CONFLICT'):
            assert code in ERROR_CODES
            assert code in STATUS_CODES

    def test_domain_conflicts_map_to_409(self):
        assert STATUS_CODES['DUPLICATE_EXECUTION'] == 409
        assert STATUS_CODES['SEQUENCE_LOCKED'] == 409
        assert STATUS_CODES['INVALID_TRANSITION'] == 409


class TestErrorResponses:

    def test_create_error_response(self, app):
        response, status = create_error_response('NOT_FOUND', 'Sequence not found', {'id': 'x'})

        body = json.loads(response.data)
        assert status == 404
        assert body['error']['code'] == 'NOT_FOUND'
        assert body['error']['details'] == {'id': 'x'}
        assert datetime.fromisoformat(body['error']['timestamp'])

    def test_unknown_code_falls_back_to_internal(self, app):
        response, status = create_error_response('NO_SUCH_CODE', 'oops')

        assert status == 500
        assert json.loads(response.data)['error']['code'] == 'INTERNAL_ERROR'

    @pytest.mark.parametrize('error, status', [
        (ValueError('bad'), 400),
        (KeyError('name'), 400),
        (IntegrityError('stmt', {}, Exception('dup')), 409),
        (SQLAlchemyError('down'), 500),
        (RuntimeError('boom'), 500),
    ])
    def test_handle_exception_categories(self, app, error, status):
        _, http_status = handle_exception(error)

        assert http_status == status

    def test_validate_required_fields(self, app):
        assert validate_required_fields({'target_id': 't', 'type': 'open'}, ['target_id', 'type']) is None

        response, status = validate_required_fields({'target_id': None}, ['target_id', 'type'])
        details = json.loads(response.data)['error']['details']
        assert status == 400
        assert details['missing_fields'] == ['target_id', 'type']


class TestOperatorRequired:

    def test_open_when_auth_disabled(self, client):
        assert client.get('/api/v1/sequences').status_code == 200

    def test_token_required_when_enabled(self, app, client):
        app.config['AUTH_REQUIRED'] = True

        assert client.get('/api/v1/sequences').status_code == 401

        token = create_access_token(identity='operator')
        response = client.get('/api/v1/sequences', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 200


class TestTimeUtils:

    def test_parse_naive_and_aware(self):
        naive = parse_timestamp('2026-01-05T09:00:00')
        aware = parse_timestamp('2026-01-05T10:00:00+01:00')
        zulu = parse_timestamp('2026-01-05T09:00:00Z')

        assert naive == aware == zulu == datetime(2026, 1, 5, 9, 0, 0)

    def test_parse_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp('') is None

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp('next tuesday')

    def test_to_naive_utc(self):
        aware = datetime(2026, 1, 5, 9, 0, tzinfo=timezone(timedelta(hours=-5)))

        assert to_naive_utc(aware) == datetime(2026, 1, 5, 14, 0)

    def test_isoformat(self):
        assert isoformat(None) is None
        assert isoformat(datetime(2026, 1, 5)) == '2026-01-05T00:00:00'
