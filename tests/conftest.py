"""
Pytest configuration and fixtures for Outreach Sequencer tests.

This module provides:
- Test app and database setup and teardown
- Flask test client and CLI runner
- Fake message generator and send channel
- Common test data
"""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from outreach_sequencer.main import create_app
from outreach_sequencer.extensions import db
from outreach_sequencer.exceptions import GenerationError, SendError
from outreach_sequencer.models import Prospect, Sequence
from outreach_sequencer.services.container import get_services
from outreach_sequencer.services.message_generator import TemplateMessageGenerator
from outreach_sequencer.services.send_channel import DeliveryReceipt, SendChannel
from outreach_sequencer.services.sequence_engine.validation import normalize_steps

# Test configuration
TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret-key',
    'JWT_SECRET_KEY': 'test-jwt-secret',
    'CORS_ORIGINS': ['http://localhost:3000'],
    'MAX_STEP_RETRIES': 3,
    'RETRY_BACKOFF_BASE_SECONDS': 300,
    'RETRY_BACKOFF_MAX_SECONDS': 3600,
    'CONDITION_RECHECK_HOURS': 12,
    'GENERATION_TIMEOUT_SECONDS': 5,
    'OPENAI_API_KEY': None,
    'NOTIFICATIONS_ENABLED': False,
    'LOG_LEVEL': 'DEBUG'
}

# Fixed start time so due times are predictable
T0 = datetime(2026, 1, 5, 9, 0, 0)


class FakeGenerator(TemplateMessageGenerator):
    """Template generator that counts calls and can be told to fail or stall."""

    def __init__(self):
        self.calls = []
        self.failures_left = 0
        self.error = GenerationError("generator unavailable")
        self.delay_seconds = 0
        self._lock = threading.Lock()

    def fail_next(self, times=1, error=None):
        self.failures_left = times
        if error is not None:
            self.error = error

    def generate(self, step, context):
        with self._lock:
            self.calls.append((step.id, step.tone, context.target_id))
            should_fail = self.failures_left > 0
            if should_fail:
                self.failures_left -= 1
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if should_fail:
            raise self.error
        return super().generate(step, context)


class RecordingChannel(SendChannel):
    """Send channel that records deliveries keyed by idempotency key."""
    name = 'recording'

    def __init__(self):
        self.sent = []
        self.failures_left = 0
        self.on_send = None

    def fail_next(self, times=1):
        self.failures_left = times

    def send(self, target_id, message, context=None, idempotency_key=None):
        if self.failures_left > 0:
            self.failures_left -= 1
            raise SendError("channel rejected the message")
        self.sent.append({
            'target_id': target_id,
            'content': message.content,
            'subject': message.subject,
            'idempotency_key': idempotency_key,
        })
        if self.on_send is not None:
            self.on_send(target_id)
        return DeliveryReceipt(delivery_id=f"delivery-{len(self.sent)}", channel=self.name)


TWO_STEP_SEQUENCE = [
    {
        'id': 'intro',
        'messageType': 'initial',
        'tone': 'friendly',
        'delayDays': 0,
        'template': 'Hi {{first_name}}, a quick idea for {{company_name}}.'
    },
    {
        'id': 'proposal',
        'messageType': 'proposal',
        'tone': 'formal',
        'delayDays': 3,
        'template': 'Thanks for replying, {{first_name}}. Here is the proposal.',
        'conditions': {'requiresPreviousResponse': True}
    }
]


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def recording_channel():
    return RecordingChannel()


@pytest.fixture
def app(fake_generator, recording_channel):
    """Create and configure a new app instance for each test."""
    app = create_app('testing', test_config=TEST_CONFIG,
                     generator=fake_generator, channel=recording_channel)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def db_session(app):
    """Database session for tests."""
    yield db.session


@pytest.fixture
def services(app):
    return get_services()


@pytest.fixture
def make_sequence(db_session):
    """Factory for sequences built from raw step JSON."""
    def _make(steps=None, name="Test Sequence"):
        normalized, _ = normalize_steps(steps or TWO_STEP_SEQUENCE)
        sequence = Sequence(name=name, description="Sequence used in tests", steps_json=normalized)
        db_session.add(sequence)
        db_session.commit()
        return sequence
    return _make


@pytest.fixture
def sample_sequence(make_sequence):
    """Two steps: an immediate intro, then a proposal gated on a reply."""
    return make_sequence()


@pytest.fixture
def sample_prospect(db_session):
    prospect = Prospect(
        first_name="John",
        last_name="Doe",
        email="john@example.com",
        company_name="Test Company",
        status="new",
        category="prospect",
        created_at=T0 - timedelta(days=10)
    )
    db_session.add(prospect)
    db_session.commit()
    return prospect


@pytest.fixture
def sample_prospects(db_session):
    """Five new prospects."""
    prospects = []
    for i in range(5):
        prospect = Prospect(
            first_name=f"Prospect{i}",
            last_name="Tester",
            email=f"prospect{i}@example.com",
            company_name=f"Company {i}",
            status="new",
            category="prospect",
            priority="high" if i % 2 == 0 else "medium",
            tags=["saas"] if i < 3 else ["retail"],
            created_at=T0 - timedelta(days=10 - i)
        )
        db_session.add(prospect)
        prospects.append(prospect)
    db_session.commit()
    return prospects


@pytest.fixture
def mock_resend():
    """Mock Resend email service for testing."""
    with patch('outreach_sequencer.services.notifications.resend') as mock_resend:
        mock_resend.Emails.send.return_value = {
            "id": "email-123",
            "from": "test@example.com",
            "to": "test@example.com",
            "subject": "Test Email"
        }
        yield mock_resend


@pytest.fixture
def json_headers():
    """Headers for JSON requests."""
    return {
        'Content-Type': 'application/json'
    }
