"""
Unit tests for engagement scoring and reply reconciliation.
"""

from datetime import timedelta

import pytest

from outreach_sequencer.models import EngagementEvent
from outreach_sequencer.services.engagement import (
    EngagementSignal, apply_reply_signals, compute_engagement_score
)
from tests.conftest import T0


def _signal(event_type, at, sentiment=None):
    return EngagementSignal(target_id='t', event_type=event_type, timestamp=at, sentiment=sentiment)


class TestComputeEngagementScore:

    def test_no_events_scores_zero(self):
        assert compute_engagement_score([], T0) == 0.0

    def test_fresh_reply(self):
        assert compute_engagement_score([_signal('reply', T0)], T0) == pytest.approx(0.6)

    def test_decay_halves_weight_per_half_life(self):
        score = compute_engagement_score([_signal('reply', T0 - timedelta(days=14))], T0, half_life_days=14)

        assert score == pytest.approx(0.3)

    def test_clamped_to_one(self):
        signals = [_signal('meeting_scheduled', T0), _signal('reply', T0)]

        assert compute_engagement_score(signals, T0) == 1.0

    def test_future_events_count_as_fresh(self):
        assert compute_engagement_score([_signal('click', T0 + timedelta(days=1))], T0) == pytest.approx(0.3)

    def test_unknown_types_ignored(self):
        assert compute_engagement_score([_signal('bounce', T0)], T0) == 0.0

    def test_monotonic_in_events(self):
        base = [_signal('open', T0 - timedelta(days=3))]

        assert compute_engagement_score(base + [_signal('click', T0)], T0) >= compute_engagement_score(base, T0)


class TestApplyReplySignals:

    def _completed(self, *times):
        return [
            {'stepId': f's{i}', 'completedAt': at.isoformat(), 'response': {'received': False}}
            for i, at in enumerate(times)
        ]

    def test_reply_attributed_to_preceding_step(self):
        completed = self._completed(T0, T0 + timedelta(days=3))
        reply = _signal('reply', T0 + timedelta(days=1), sentiment='positive')

        updated = apply_reply_signals(completed, [reply])

        assert updated[0]['response']['received'] is True
        assert updated[0]['response']['sentiment'] == 'positive'
        assert updated[1]['response']['received'] is False

    def test_reply_before_first_step_ignored(self):
        updated = apply_reply_signals(self._completed(T0), [_signal('reply', T0 - timedelta(hours=1))])

        assert updated[0]['response']['received'] is False

    def test_reply_after_last_step(self):
        updated = apply_reply_signals(self._completed(T0, T0 + timedelta(days=3)),
                                      [_signal('reply', T0 + timedelta(days=5))])

        assert updated[1]['response']['received'] is True
        assert updated[0]['response']['received'] is False

    def test_non_reply_events_ignored(self):
        updated = apply_reply_signals(self._completed(T0), [_signal('click', T0 + timedelta(hours=1))])

        assert updated[0]['response']['received'] is False

    def test_input_not_mutated(self):
        completed = self._completed(T0)

        apply_reply_signals(completed, [_signal('reply', T0 + timedelta(hours=1))])

        assert completed[0]['response']['received'] is False


class TestEngagementSource:

    def test_record_and_score(self, services, sample_prospect):
        services.engagement.record_event(sample_prospect.id, 'reply', T0, sentiment='positive')

        events = services.engagement.get_events(sample_prospect.id)
        assert [e.event_type for e in events] == ['reply']
        assert services.engagement.score(sample_prospect.id, T0) == pytest.approx(0.6)

    def test_reply_updates_last_contact(self, services, sample_prospect, db_session):
        services.engagement.record_event(sample_prospect.id, 'reply', T0)

        db_session.refresh(sample_prospect)
        assert sample_prospect.last_contact_at == T0

    def test_open_does_not_update_last_contact(self, services, sample_prospect, db_session):
        services.engagement.record_event(sample_prospect.id, 'open', T0)

        db_session.refresh(sample_prospect)
        assert sample_prospect.last_contact_at is None

    def test_unknown_type_rejected(self, services, sample_prospect):
        with pytest.raises(ValueError):
            services.engagement.record_event(sample_prospect.id, 'bounce', T0)

        assert EngagementEvent.query.count() == 0
