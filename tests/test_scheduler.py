"""
ReviewDesk - Scheduler Tests
"""
from datetime import datetime

from reviewdesk.models.db_models import DBReview, IntegrationStatus
from reviewdesk.services import scheduler_service
from reviewdesk.services.notification_dispatcher import NotificationDispatcher
from reviewdesk.services.pipeline import ReviewPipeline
from reviewdesk.services.platform_clients import RawReview
from reviewdesk.exceptions import PlatformError
from tests.fakes import FakeFetcher, FakeSender


def install(app, fetcher):
    settings = app.extensions['pipeline_settings']
    senders = {'sms': FakeSender(), 'email': FakeSender(), 'webhook': FakeSender()}
    app.extensions['review_pipeline'] = ReviewPipeline(
        settings, fetcher=fetcher,
        dispatcher=NotificationDispatcher(settings, senders=senders, sleep=lambda seconds: None)
    )


class TestScheduledSync:

    def test_runs_every_business(self, app, business, other_business):
        review = RawReview(platform='google', platform_review_id='g-123', author='Ann', rating=5,
                           posted_at=datetime(2024, 3, 1, 12, 0))
        install(app, FakeFetcher([review]))

        scheduler_service.run_review_sync(app)

        assert DBReview.query.count() == 2

    def test_failures_are_recorded_not_raised(self, app, business):
        install(app, FakeFetcher(error=PlatformError('google', 'HTTP 503', 503)))

        scheduler_service.run_review_sync(app)

        integration = business.get_integration('google')
        assert integration.consecutive_failures == 1
        assert integration.status == IntegrationStatus.CONNECTED

    def test_status_before_start(self):
        assert scheduler_service.get_scheduler_status() == {'status': 'not_initialized', 'jobs': []}
