"""
Unit tests for API Endpoints.

This module tests the HTTP surface: request handling, response formatting
and the error envelope for domain failures.
"""

import json
from datetime import timedelta
from unittest.mock import Mock

import pytest

from outreach_sequencer.models import SequenceExecution
from outreach_sequencer.utils.time_utils import utcnow
from tests.conftest import T0, TWO_STEP_SEQUENCE


def _json(response):
    return json.loads(response.data)


class TestHealth:

    def test_index(self, client):
        response = client.get('/')

        assert response.status_code == 200
        assert _json(response)['status'] == 'ok'

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get('/api/v1/nowhere')

        assert response.status_code == 404
        assert _json(response)['error']['code'] == 'NOT_FOUND'


class TestSequenceEndpoints:
    """Test cases for sequence endpoints."""

    def test_create_sequence(self, client, json_headers):
        response = client.post('/api/v1/sequences', headers=json_headers, data=json.dumps({
            'name': 'Q3 outreach',
            'steps': TWO_STEP_SEQUENCE,
        }))

        assert response.status_code == 201
        data = _json(response)
        assert data['sequence']['total_steps'] == 2
        assert data['sequence']['steps'][1]['conditions'] == {'requiresPreviousResponse': True}

    def test_create_sequence_invalid_steps(self, client, json_headers):
        response = client.post('/api/v1/sequences', headers=json_headers, data=json.dumps({
            'name': 'Broken',
            'steps': [{'messageType': 'fax', 'tone': 'friendly', 'delayDays': 0, 'template': 'Hi'}],
        }))

        assert response.status_code == 400
        error = _json(response)['error']
        assert error['code'] == 'INVALID_SEQUENCE'
        assert any('messageType' in e for e in error['details']['errors'])

    def test_create_sequence_requires_body(self, client, json_headers):
        response = client.post('/api/v1/sequences', headers=json_headers, data='')

        assert response.status_code == 400
        assert _json(response)['error']['code'] == 'VALIDATION_ERROR'

    def test_list_and_get(self, client, sample_sequence):
        listed = _json(client.get('/api/v1/sequences'))
        assert listed['total'] == 1

        response = client.get(f'/api/v1/sequences/{sample_sequence.id}')
        assert response.status_code == 200
        assert _json(response)['execution_counts'] == {}

    def test_get_missing_sequence(self, client):
        response = client.get('/api/v1/sequences/does-not-exist')

        assert response.status_code == 404
        assert 'does-not-exist' in _json(response)['error']['message']

    def test_update_metadata(self, client, json_headers, sample_sequence):
        response = client.put(f'/api/v1/sequences/{sample_sequence.id}', headers=json_headers,
                              data=json.dumps({'name': 'Renamed', 'description': 'new'}))

        assert response.status_code == 200
        assert _json(response)['sequence']['name'] == 'Renamed'

    def test_steps_locked_once_referenced(self, client, json_headers, services, sample_sequence, sample_prospect):
        services.store.create_execution(sample_sequence, sample_prospect.id, T0)

        response = client.patch(f'/api/v1/sequences/{sample_sequence.id}', headers=json_headers,
                                data=json.dumps({'steps': TWO_STEP_SEQUENCE[:1]}))

        assert response.status_code == 409
        assert _json(response)['error']['code'] == 'SEQUENCE_LOCKED'

    def test_validate(self, client, json_headers):
        valid = _json(client.post('/api/v1/sequences/validate', headers=json_headers,
                                  data=json.dumps({'steps': TWO_STEP_SEQUENCE})))
        invalid = _json(client.post('/api/v1/sequences/validate', headers=json_headers,
                                    data=json.dumps({'steps': []})))

        assert valid['valid'] is True
        assert invalid['valid'] is False
        assert invalid['errors']

    def test_example(self, client):
        data = _json(client.get('/api/v1/sequences/example'))

        assert len(data['example_sequence']) == 4

    def test_draft_without_llm(self, client, json_headers, services):
        services.drafts.llm = None

        response = client.post('/api/v1/sequences/draft', headers=json_headers,
                               data=json.dumps({'description': 'Sell audits to SaaS founders'}))

        assert response.status_code == 502
        assert _json(response)['error']['code'] == 'EXTERNAL_API_ERROR'

    def test_draft_with_llm(self, client, json_headers, services):
        llm = Mock()
        llm.complete_json.return_value = {'steps': [
            {'messageType': 'initial', 'tone': 'friendly', 'delayDays': 0, 'template': 'Hi {{first_name}}'},
            {'messageType': 'followup', 'tone': 'casual', 'delayDays': 4, 'template': 'Hey {{first_name}}'},
        ]}
        services.drafts.llm = llm

        response = client.post('/api/v1/sequences/draft', headers=json_headers,
                               data=json.dumps({'description': 'Sell audits', 'name': 'Audit push'}))

        assert response.status_code == 200
        draft = _json(response)['draft']
        assert draft['name'] == 'Audit push'
        assert [step['delayDays'] for step in draft['steps']] == [0, 4]


class TestExecuteEndpoints:

    def test_execute_creates_and_processes(self, client, json_headers, sample_sequence, sample_prospects,
                                           recording_channel):
        response = client.post(f'/api/v1/sequences/{sample_sequence.id}/execute', headers=json_headers,
                               data=json.dumps({'filters': {'status': 'new', 'tags': ['saas']}}))

        assert response.status_code == 200
        data = _json(response)
        assert len(data['created']) == 3
        assert [item['outcome'] for item in data['processed']] == ['processed'] * 3
        assert len(recording_channel.sent) == 3

    def test_execute_without_processing(self, client, json_headers, sample_sequence, sample_prospects,
                                        recording_channel):
        response = client.post(f'/api/v1/sequences/{sample_sequence.id}/execute', headers=json_headers,
                               data=json.dumps({'process_now': False}))

        data = _json(response)
        assert len(data['created']) == 5
        assert 'processed' not in data
        assert recording_channel.sent == []

    def test_execute_twice_skips_duplicates(self, client, json_headers, sample_sequence, sample_prospects):
        body = json.dumps({'process_now': False})
        client.post(f'/api/v1/sequences/{sample_sequence.id}/execute', headers=json_headers, data=body)

        data = _json(client.post(f'/api/v1/sequences/{sample_sequence.id}/execute',
                                 headers=json_headers, data=body))

        assert data['created'] == []
        assert len(data['skipped_duplicates']) == 5
        assert SequenceExecution.query.count() == 5

    def test_execute_invalid_filter(self, client, json_headers, sample_sequence):
        response = client.post(f'/api/v1/sequences/{sample_sequence.id}/execute', headers=json_headers,
                               data=json.dumps({'filters': {'lastContactDays': 'recent'}}))

        assert response.status_code == 400
        assert _json(response)['error']['code'] == 'INVALID_FILTER'

    def test_start_for_target_duplicate(self, client, sample_sequence, sample_prospect):
        url = f'/api/v1/sequences/{sample_sequence.id}/targets/{sample_prospect.id}'

        assert client.post(url).status_code == 201
        response = client.post(url)

        assert response.status_code == 409
        assert _json(response)['error']['details']['target_id'] == sample_prospect.id

    def test_pause_and_resume_sequence(self, client, services, sample_sequence, sample_prospects):
        for prospect in sample_prospects:
            services.store.create_execution(sample_sequence, prospect.id, T0)

        paused = _json(client.post(f'/api/v1/sequences/{sample_sequence.id}/pause'))
        resumed = _json(client.post(f'/api/v1/sequences/{sample_sequence.id}/resume'))

        assert paused['paused_executions'] == 5
        assert paused['sequence']['is_active'] is False
        assert resumed['resumed_executions'] == 5

    def test_list_sequence_executions(self, client, services, sample_sequence, sample_prospect):
        services.store.create_execution(sample_sequence, sample_prospect.id, T0)

        data = _json(client.get(f'/api/v1/sequences/{sample_sequence.id}/executions?status=active'))
        bad = client.get(f'/api/v1/sequences/{sample_sequence.id}/executions?status=sleeping')

        assert data['total'] == 1
        assert bad.status_code == 400


class TestExecutionEndpoints:

    @pytest.fixture
    def execution(self, services, sample_sequence, sample_prospect):
        return services.store.create_execution(sample_sequence, sample_prospect.id, utcnow() - timedelta(minutes=1))

    def test_get_execution(self, client, execution):
        data = _json(client.get(f'/api/v1/executions/{execution.id}'))

        assert data['status'] == 'active'
        assert data['total_steps'] == 2
        assert data['invariant_violations'] == []

    def test_get_missing_execution(self, client):
        response = client.get('/api/v1/executions/missing')

        assert response.status_code == 404

    def test_list_executions_filters(self, client, execution, sample_prospect):
        by_target = _json(client.get(f'/api/v1/executions?target_id={sample_prospect.id}'))
        stalled = _json(client.get('/api/v1/executions?stalled=true'))

        assert by_target['total'] == 1
        assert stalled['total'] == 0

    def test_process_and_attempts(self, client, execution, recording_channel):
        data = _json(client.post(f'/api/v1/executions/{execution.id}/process'))

        assert data['result']['outcome'] == 'processed'
        assert data['execution']['current_step_index'] == 1
        attempts = _json(client.get(f'/api/v1/executions/{execution.id}/attempts'))['attempts']
        assert [a['status'] for a in attempts] == ['sent']
        assert attempts[0]['attempt_key'] == recording_channel.sent[0]['idempotency_key']

    def test_pause_resume_cancel(self, client, json_headers, execution):
        assert _json(client.post(f'/api/v1/executions/{execution.id}/pause'))['execution']['status'] == 'paused'
        assert _json(client.post(f'/api/v1/executions/{execution.id}/resume'))['execution']['status'] == 'active'

        cancelled = _json(client.post(f'/api/v1/executions/{execution.id}/cancel', headers=json_headers,
                                      data=json.dumps({'reason': 'unsubscribed'})))
        assert cancelled['execution']['status'] == 'cancelled'
        assert cancelled['execution']['cancel_reason'] == 'unsubscribed'

        response = client.post(f'/api/v1/executions/{execution.id}/resume')
        assert response.status_code == 409
        assert _json(response)['error']['code'] == 'INVALID_TRANSITION'

    def test_retry(self, client, services, execution):
        services.store.require_update(execution.id, 1, {'stalled_at': T0, 'next_message_due_at': None})

        data = _json(client.post(f'/api/v1/executions/{execution.id}/retry'))

        assert data['execution']['stalled'] is False
        assert data['execution']['next_message_due_at'] is not None


class TestEngagementEndpoints:

    def test_record_event_unblocks_gated_step(self, client, json_headers, services, sample_sequence,
                                              sample_prospect, recording_channel):
        start = utcnow() - timedelta(days=5)
        execution = services.store.create_execution(sample_sequence, sample_prospect.id, start)
        services.engine.process_execution(execution.id, start)
        assert services.engine.process_execution(execution.id, start + timedelta(days=3)).outcome == 'deferred'

        response = client.post('/api/v1/engagement/events', headers=json_headers, data=json.dumps({
            'target_id': sample_prospect.id,
            'type': 'reply',
            'timestamp': (start + timedelta(days=1)).isoformat(),
            'sentiment': 'positive',
        }))

        assert response.status_code == 201
        data = _json(response)
        assert [r['outcome'] for r in data['reevaluated']] == ['completed']
        assert len(recording_channel.sent) == 2

    def test_record_event_validation(self, client, json_headers):
        missing = client.post('/api/v1/engagement/events', headers=json_headers,
                              data=json.dumps({'type': 'reply'}))
        bad_type = client.post('/api/v1/engagement/events', headers=json_headers,
                               data=json.dumps({'target_id': 't1', 'type': 'bounce'}))
        bad_time = client.post('/api/v1/engagement/events', headers=json_headers,
                               data=json.dumps({'target_id': 't1', 'type': 'open', 'timestamp': 'yesterday'}))

        assert missing.status_code == 400
        assert bad_type.status_code == 400
        assert bad_time.status_code == 400

    def test_target_engagement(self, client, services, sample_prospect):
        services.engagement.record_event(sample_prospect.id, 'click', utcnow())

        data = _json(client.get(f'/api/v1/targets/{sample_prospect.id}/engagement'))

        assert data['engagement_score'] == pytest.approx(0.3, abs=0.01)
        assert [event['type'] for event in data['events']] == ['click']


class TestTargetEndpoints:

    def test_create_and_get(self, client, json_headers):
        response = client.post('/api/v1/targets', headers=json_headers, data=json.dumps({
            'id': 'crm-42', 'first_name': 'Ana', 'email': 'ana@acme.test', 'tags': ['saas']
        }))

        assert response.status_code == 201
        data = _json(client.get('/api/v1/targets/crm-42'))
        assert data['tags'] == ['saas']

    def test_create_requires_identity(self, client, json_headers):
        response = client.post('/api/v1/targets', headers=json_headers, data=json.dumps({'status': 'new'}))

        assert response.status_code == 400

    def test_list_and_update(self, client, json_headers, sample_prospects):
        high = _json(client.get('/api/v1/targets?priority=high'))
        assert high['total'] == 3

        target_id = sample_prospects[0].id
        response = client.patch(f'/api/v1/targets/{target_id}', headers=json_headers,
                                data=json.dumps({'status': 'replied', 'tags': 'oops'}))
        assert response.status_code == 400

        response = client.patch(f'/api/v1/targets/{target_id}', headers=json_headers,
                                data=json.dumps({'status': 'replied'}))
        assert _json(response)['target']['status'] == 'replied'

    def test_missing_target(self, client):
        assert client.get('/api/v1/targets/nobody').status_code == 404


class TestSchedulerEndpoints:

    def test_status(self, client):
        data = _json(client.get('/api/v1/automation/scheduler/status'))

        assert data['running'] is False
        assert data['due_now'] == 0

    def test_tick(self, client, json_headers, services, sample_sequence, sample_prospect):
        services.store.create_execution(sample_sequence, sample_prospect.id, T0)

        data = _json(client.post('/api/v1/automation/scheduler/tick', headers=json_headers,
                                 data=json.dumps({'now': T0.isoformat()})))

        assert data['due'] == 1
        assert data['outcomes'] == {'processed': 1}

    def test_tick_bad_now(self, client, json_headers):
        response = client.post('/api/v1/automation/scheduler/tick', headers=json_headers,
                               data=json.dumps({'now': 'soon'}))

        assert response.status_code == 400

    def test_stop_when_stopped(self, client):
        data = _json(client.post('/api/v1/automation/scheduler/stop'))

        assert data['status'] == 'stopped'
