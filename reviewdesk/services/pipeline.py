"""
ReviewDesk - Review Pipeline
Fetch -> gate -> {notifications, reply drafts}, plus integration health
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flask import current_app

from reviewdesk.config import PipelineSettings
from reviewdesk.database import db
from reviewdesk.exceptions import IntegrationUnavailable, PlatformError
from reviewdesk.models.db_models import (
    DBBusiness, DBIntegration, DBReview, DBWebhookLog, IntegrationStatus
)
from reviewdesk.services.notification_dispatcher import Event, NotificationDispatcher
from reviewdesk.services.platform_clients import ReviewFetcher
from reviewdesk.services.reply_coach import ReplyCoach
from reviewdesk.services.review_gate import ReviewGate
from reviewdesk.services.webhook_gateway import Accepted, WebhookGateway

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """What one fetch run did"""
    business_id: str
    platform: str
    status: str = 'ok'  # ok, error, unavailable
    admitted: List[str] = field(default_factory=list)
    drafted: int = 0
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    rate_limited: bool = False

    def to_dict(self) -> dict:
        return {
            'business_id': self.business_id,
            'platform': self.platform,
            'status': self.status,
            'admitted_count': len(self.admitted),
            'admitted': self.admitted,
            'drafted': self.drafted,
            'notifications': self.notifications,
            'error': self.error,
            'rate_limited': self.rate_limited
        }


class ReviewPipeline:
    """Wires the fetcher, gate, reply coach and dispatcher together"""

    def __init__(
        self,
        settings: PipelineSettings,
        fetcher: ReviewFetcher = None,
        gate: ReviewGate = None,
        coach: ReplyCoach = None,
        dispatcher: NotificationDispatcher = None,
        gateway: WebhookGateway = None
    ):
        self.settings = settings
        self.fetcher = fetcher or ReviewFetcher(settings)
        self.gate = gate or ReviewGate()
        self.coach = coach or ReplyCoach(settings)
        self.dispatcher = dispatcher or NotificationDispatcher(settings)
        self.gateway = gateway or WebhookGateway(settings)

    # ==========================================
    # Sync
    # ==========================================

    def sync(self, business: DBBusiness, platform: str, limit: int = None, place_id: str = None) -> SyncSummary:
        """
        Run one fetch for one business and platform.

        Fetch failures don't raise; they update the integration's health and
        come back in the summary.
        """
        summary = SyncSummary(business.id, platform)
        integration = business.get_integration(platform)
        cursor = integration.fetch_cursor if integration else None
        # Reviews committed before a mid-fetch failure still get notified
        admitted = []

        try:
            raw_reviews = self.fetcher.fetch_reviews(business, platform, cursor, external_id=place_id)
            for review in self.gate.admit_iter(business, platform, raw_reviews, limit=limit):
                admitted.append(review)
        except IntegrationUnavailable as e:
            logger.warning(f"Sync {business.id}/{platform}: {e}")
            self._mark_unavailable(integration, e)
            summary.status = 'unavailable'
            summary.error = str(e)
        except PlatformError as e:
            logger.warning(f"Sync {business.id}/{platform} failed: {e}")
            self._record_failure(integration, e)
            summary.status = 'error'
            summary.error = str(e)
            summary.rate_limited = e.rate_limited
        else:
            self._record_success(integration)

        self._fan_out(business, admitted, summary)

        logger.info(f"Sync {business.id}/{platform}: {len(admitted)} new review(s)")
        return summary

    def sync_all(self) -> List[SyncSummary]:
        """Sync every review integration that isn't disconnected, one business at a time"""
        integrations = DBIntegration.query.filter(
            DBIntegration.platform.in_(DBIntegration.REVIEW_PLATFORMS),
            DBIntegration.status != IntegrationStatus.DISCONNECTED
        ).order_by(DBIntegration.business_id, DBIntegration.platform).all()

        summaries = []
        for integration in integrations:
            business = integration.business
            if business is None or not business.is_active:
                continue
            try:
                summaries.append(self.sync(business, integration.platform))
            except Exception as e:
                logger.error(f"Sync crashed for {integration.business_id}/{integration.platform}: {e}")
                db.session.rollback()
                summaries.append(SyncSummary(integration.business_id, integration.platform,
                                             status='error', error=str(e)))

        logger.info(f"Scheduled sync complete: {len(summaries)} integration(s)")
        return summaries

    def _fan_out(self, business: DBBusiness, admitted: List[DBReview], summary: SyncSummary):
        channels = business.get_active_channels()

        for review in admitted:
            summary.admitted.append(review.id)

            results = self.dispatcher.dispatch(Event.for_review(review), channels)
            summary.notifications.extend(r.to_dict() for r in results)

            if self.settings.auto_draft_replies:
                try:
                    if self.coach.draft_for_review(review):
                        summary.drafted += 1
                except Exception as e:
                    logger.error(f"Reply draft failed for {review.id}: {e}")

    # ==========================================
    # Integration health
    # ==========================================

    def _record_success(self, integration: Optional[DBIntegration]):
        if integration is None:
            return
        integration.status = IntegrationStatus.CONNECTED
        integration.consecutive_failures = 0
        integration.last_error = None
        db.session.commit()

    def _record_failure(self, integration: Optional[DBIntegration], error: PlatformError):
        if integration is None:
            return
        db.session.rollback()
        integration.consecutive_failures = (integration.consecutive_failures or 0) + 1
        integration.last_error = str(error)
        if integration.consecutive_failures >= self.settings.sync_failure_threshold:
            if integration.status != IntegrationStatus.ERROR:
                logger.error(
                    f"{integration.platform} integration for {integration.business_id} failed "
                    f"{integration.consecutive_failures} runs in a row, marking as error"
                )
            integration.status = IntegrationStatus.ERROR
        db.session.commit()

    def _mark_unavailable(self, integration: Optional[DBIntegration], error: IntegrationUnavailable):
        if integration is None:
            return
        db.session.rollback()
        integration.status = IntegrationStatus.DISCONNECTED
        integration.last_error = error.reason
        db.session.commit()

    # ==========================================
    # Inbound webhooks
    # ==========================================

    def ingest_inbound(self, accepted: Accepted) -> dict:
        """Hand gateway events to the gate (reviews) or the dispatcher (business events)"""
        result = {'events': len(accepted.events), 'admitted': [], 'notifications': []}
        log = DBWebhookLog.query.filter_by(event_id=accepted.log_id).first() if accepted.log_id else None

        try:
            for event in accepted.events:
                business = db.session.get(DBBusiness, event.business_id)
                if business is None:
                    continue

                if event.review is not None:
                    admitted = self.gate.admit_reviews(business, event.review.platform, [event.review],
                                                       advance_cursor=False)
                    summary = SyncSummary(business.id, event.review.platform)
                    self._fan_out(business, admitted, summary)
                    result['admitted'].extend(summary.admitted)
                    result['notifications'].extend(summary.notifications)
                else:
                    outbound = Event(event.event_id, event.event_type, business.id, data=event.data)
                    job_results = self.dispatcher.dispatch(outbound, business.get_active_channels())
                    result['notifications'].extend(r.to_dict() for r in job_results)
        except Exception as e:
            logger.error(f"Failed to process inbound webhook {accepted.log_id}: {e}")
            db.session.rollback()
            if log:
                log.status = 'error'
                log.error_message = str(e)
                db.session.commit()
            raise

        if log:
            log.status = 'processed'
            db.session.commit()

        return result


def get_review_pipeline() -> ReviewPipeline:
    """Get the pipeline the current app was built with"""
    pipeline = current_app.extensions.get('review_pipeline')
    if pipeline is None:
        settings = current_app.extensions.get('pipeline_settings') or PipelineSettings.from_config(current_app.config)
        pipeline = ReviewPipeline(settings)
        current_app.extensions['review_pipeline'] = pipeline
    return pipeline
