"""
ReviewDesk - Review Pipeline Tests
"""
import json
import dataclasses
from datetime import datetime

import pytest

from reviewdesk.database import db
from reviewdesk.exceptions import FetchTimeout, IntegrationUnavailable, PlatformError
from reviewdesk.models.db_models import (
    DBIntegration, DBNotificationJob, DBReview, DBWebhookLog, IntegrationStatus, JobStatus, ReplyState
)
from reviewdesk.services.http_client import CallResult
from reviewdesk.services.notification_dispatcher import NotificationDispatcher
from reviewdesk.services.pipeline import ReviewPipeline
from reviewdesk.services.platform_clients import RawReview
from reviewdesk.services.reply_coach import ReplyCoach
from reviewdesk.services.webhook_gateway import WebhookGateway
from tests.fakes import FakeFetcher, FakeResponse, FakeSender, FakeSession


G123 = RawReview(platform='google', platform_review_id='g-123', author='Ann', rating=5,
                 body='Fixed our leak fast', posted_at=datetime(2024, 3, 1, 12, 0))
G124 = RawReview(platform='google', platform_review_id='g-124', author='Bob', rating=2,
                 body='Late and rude', posted_at=datetime(2024, 3, 2, 9, 0))


def make_pipeline(settings, fetcher=None, senders=None, coach_session=None):
    senders = senders or {'sms': FakeSender(), 'email': FakeSender(), 'webhook': FakeSender()}
    return ReviewPipeline(
        settings,
        fetcher=fetcher or FakeFetcher(),
        coach=ReplyCoach(settings, session=coach_session or FakeSession()),
        dispatcher=NotificationDispatcher(settings, senders=senders, sleep=lambda seconds: None),
    )


class TestSync:
    """Test a single fetch run"""

    def test_new_review_notifies_every_channel(self, business, channels, settings):
        pipeline = make_pipeline(settings, fetcher=FakeFetcher([G123]))

        summary = pipeline.sync(business, 'google')

        assert summary.status == 'ok'
        assert len(summary.admitted) == 1
        review = DBReview.query.one()
        assert review.platform_review_id == 'g-123'
        assert review.sentiment == 'positive'
        jobs = DBNotificationJob.query.filter_by(review_id=review.id).all()
        assert sorted(j.channel for j in jobs) == ['email', 'sms', 'webhook']
        assert all(j.status == JobStatus.SENT for j in jobs)

    def test_repeat_fetch_admits_nothing(self, business, channels, settings):
        pipeline = make_pipeline(settings, fetcher=FakeFetcher([G123]))
        pipeline.sync(business, 'google')

        summary = pipeline.sync(business, 'google')

        assert summary.admitted == []
        assert summary.notifications == []
        assert DBReview.query.count() == 1
        assert DBNotificationJob.query.count() == 3

    def test_cursor_and_last_sync_advance(self, business, settings):
        pipeline = make_pipeline(settings, fetcher=FakeFetcher([G123, G124]))

        pipeline.sync(business, 'google')

        integration = business.get_integration('google')
        assert integration.fetch_cursor == '2024-03-02T09:00:00'
        assert integration.last_synced_at is not None

    def test_cursor_passed_to_fetcher(self, business, settings):
        business.get_integration('google').fetch_cursor = '2024-03-01T00:00:00'
        db.session.commit()
        fetcher = FakeFetcher([])

        make_pipeline(settings, fetcher=fetcher).sync(business, 'google', place_id='override')

        assert fetcher.calls[0]['since'] == '2024-03-01T00:00:00'
        assert fetcher.calls[0]['external_id'] == 'override'

    def test_limit(self, business, settings):
        summary = make_pipeline(settings, fetcher=FakeFetcher([G123, G124])).sync(business, 'google', limit=1)

        assert len(summary.admitted) == 1

    def test_auto_draft(self, business, settings):
        settings = dataclasses.replace(settings, auto_draft_replies=True)
        content = json.dumps({'option1': 'Thanks Ann!', 'option2': 'Thank you, Ann.'})
        session = FakeSession(FakeResponse(200, {'choices': [{'message': {'content': content}}]}))

        summary = make_pipeline(settings, fetcher=FakeFetcher([G123]), coach_session=session).sync(business, 'google')

        assert summary.drafted == 1
        review = DBReview.query.one()
        assert review.reply_state == ReplyState.DRAFTED
        assert review.draft_text == 'Thanks Ann!'

    def test_no_auto_draft_when_disabled(self, business, settings):
        make_pipeline(settings, fetcher=FakeFetcher([G123])).sync(business, 'google')

        assert DBReview.query.one().reply_state == ReplyState.NONE

    def test_failed_channel_does_not_block_others(self, business, channels, settings):
        senders = {'sms': FakeSender(CallResult.fatal_failure('bad number')),
                   'email': FakeSender(), 'webhook': FakeSender()}

        summary = make_pipeline(settings, fetcher=FakeFetcher([G123]), senders=senders).sync(business, 'google')

        statuses = {n['channel']: n['status'] for n in summary.notifications}
        assert statuses == {'sms': 'failed', 'email': 'sent', 'webhook': 'sent'}


class TestIntegrationHealth:
    """Test how fetch failures change integration status"""

    def test_failures_reach_threshold(self, business, settings):
        settings = dataclasses.replace(settings, sync_failure_threshold=3)
        pipeline = make_pipeline(settings, fetcher=FakeFetcher(error=PlatformError('google', 'HTTP 503', 503)))
        integration = business.get_integration('google')

        pipeline.sync(business, 'google')
        pipeline.sync(business, 'google')
        assert integration.status == IntegrationStatus.CONNECTED
        assert integration.consecutive_failures == 2

        summary = pipeline.sync(business, 'google')

        assert summary.status == 'error'
        assert integration.status == IntegrationStatus.ERROR
        assert integration.last_error == 'google error: HTTP 503'

    def test_success_resets_failures(self, business, settings):
        integration = business.get_integration('google')
        integration.status = IntegrationStatus.ERROR
        integration.consecutive_failures = 5
        db.session.commit()

        make_pipeline(settings, fetcher=FakeFetcher([])).sync(business, 'google')

        assert integration.status == IntegrationStatus.CONNECTED
        assert integration.consecutive_failures == 0
        assert integration.last_error is None

    def test_timeout_counts_as_failure(self, business, settings):
        summary = make_pipeline(settings, fetcher=FakeFetcher(error=FetchTimeout('google', 20))).sync(business, 'google')

        assert summary.status == 'error'
        assert business.get_integration('google').consecutive_failures == 1

    def test_rate_limit_is_reported(self, business, settings):
        error = PlatformError('google', 'OVER_QUERY_LIMIT', rate_limited=True)

        summary = make_pipeline(settings, fetcher=FakeFetcher(error=error)).sync(business, 'google')

        assert summary.rate_limited == True

    def test_unavailable_disconnects(self, business, settings):
        error = IntegrationUnavailable('google', 'credential rejected')

        summary = make_pipeline(settings, fetcher=FakeFetcher(error=error)).sync(business, 'google')

        integration = business.get_integration('google')
        assert summary.status == 'unavailable'
        assert integration.status == IntegrationStatus.DISCONNECTED
        assert integration.last_error == 'credential rejected'

    def test_partial_failure_still_notifies_admitted(self, business, channels, settings):
        fetcher = FakeFetcher([G123, G124], error=PlatformError('google', 'HTTP 502', 502), fail_after=1)

        summary = make_pipeline(settings, fetcher=fetcher).sync(business, 'google')

        assert summary.status == 'error'
        assert len(summary.admitted) == 1
        assert DBNotificationJob.query.count() == 3
        assert business.get_integration('google').fetch_cursor is None


class TestSyncAll:
    """Test the scheduled run across businesses"""

    def test_one_failure_does_not_stop_the_rest(self, business, other_business, settings):
        class PickyFetcher(FakeFetcher):
            def fetch_reviews(self, business, platform, since_cursor=None, external_id=None):
                if business.id == 'B1':
                    raise RuntimeError('database hiccup')
                return iter([G123])

        summaries = make_pipeline(settings, fetcher=PickyFetcher()).sync_all()

        by_business = {s.business_id: s for s in summaries}
        assert by_business['B1'].status == 'error'
        assert by_business['B2'].status == 'ok'
        assert len(by_business['B2'].admitted) == 1

    def test_skips_disconnected_and_non_review_integrations(self, business, settings):
        business.get_integration('google').status = IntegrationStatus.DISCONNECTED
        db.session.add(DBIntegration('B1', 'quickbooks', external_id='realm-1'))
        db.session.commit()
        fetcher = FakeFetcher([])

        summaries = make_pipeline(settings, fetcher=fetcher).sync_all()

        assert summaries == []
        assert fetcher.calls == []

    def test_skips_inactive_businesses(self, business, settings):
        business.is_active = False
        db.session.commit()

        assert make_pipeline(settings, fetcher=FakeFetcher([G123])).sync_all() == []


class TestInbound:
    """Test events handed over by the webhook gateway"""

    def _admit(self, settings, payload):
        raw = json.dumps(payload).encode('utf-8')
        return WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'b1-secret'}, raw)

    def test_pushed_review_is_admitted_and_notified(self, business, channels, settings):
        accepted = self._admit(settings, {'business_id': 'B1', 'event_type': 'review.created',
                                          'review': {'platform': 'google', 'id': 'g-123', 'rating': 5,
                                                     'author': 'Ann', 'posted_at': '2024-03-01T12:00:00Z'}})

        result = make_pipeline(settings).ingest_inbound(accepted)

        assert len(result['admitted']) == 1
        assert len(result['notifications']) == 3
        assert business.get_integration('google').fetch_cursor is None
        assert DBWebhookLog.query.one().status == 'processed'

    def test_pushed_review_dedups_against_fetched(self, business, channels, settings):
        pipeline = make_pipeline(settings, fetcher=FakeFetcher([G123]))
        pipeline.sync(business, 'google')
        accepted = self._admit(settings, {'business_id': 'B1', 'event_type': 'review.created',
                                          'review': {'platform': 'google', 'id': 'g-123', 'rating': 5}})

        result = pipeline.ingest_inbound(accepted)

        assert result['admitted'] == []
        assert DBReview.query.count() == 1

    def test_business_event_is_dispatched(self, business, channels, settings):
        accepted = self._admit(settings, {'business_id': 'B1', 'event_type': 'job_completed',
                                          'event_id': 'zap-9', 'email': 'cust@example.com'})

        result = make_pipeline(settings).ingest_inbound(accepted)

        assert len(result['notifications']) == 3
        jobs = DBNotificationJob.query.all()
        assert {j.event_id for j in jobs} == {'zap-9'}
        assert all(j.review_id is None for j in jobs)

    def test_replayed_business_event_is_not_resent(self, business, channels, settings):
        payload = {'business_id': 'B1', 'event_type': 'invoice_paid', 'event_id': 'inv-1',
                   'email': 'cust@example.com'}
        pipeline = make_pipeline(settings)

        pipeline.ingest_inbound(self._admit(settings, payload))
        second = pipeline.ingest_inbound(self._admit(settings, payload))

        assert all(n['status'] == 'duplicate' for n in second['notifications'])
        assert DBNotificationJob.query.count() == 3

    def test_processing_error_marks_log(self, business, channels, settings):
        accepted = self._admit(settings, {'business_id': 'B1', 'event_type': 'job_completed',
                                          'email': 'cust@example.com'})
        pipeline = make_pipeline(settings)

        def explode(event, channels):
            raise RuntimeError('dispatch down')
        pipeline.dispatcher.dispatch = explode

        with pytest.raises(RuntimeError):
            pipeline.ingest_inbound(accepted)

        log = DBWebhookLog.query.one()
        assert log.status == 'error'
        assert log.error_message == 'dispatch down'
