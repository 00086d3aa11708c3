"""
ReviewDesk - Services
Review ingestion, reply drafting, notifications and inbound webhooks
"""
from reviewdesk.services.platform_clients import ReviewFetcher, RawReview
from reviewdesk.services.review_gate import ReviewGate
from reviewdesk.services.reply_coach import ReplyCoach, ReplyDraft
from reviewdesk.services.notification_dispatcher import NotificationDispatcher, Event
from reviewdesk.services.webhook_gateway import WebhookGateway, Accepted, Rejected
from reviewdesk.services.pipeline import ReviewPipeline, SyncSummary, get_review_pipeline

__all__ = [
    'ReviewFetcher',
    'RawReview',
    'ReviewGate',
    'ReplyCoach',
    'ReplyDraft',
    'NotificationDispatcher',
    'Event',
    'WebhookGateway',
    'Accepted',
    'Rejected',
    'ReviewPipeline',
    'SyncSummary',
    'get_review_pipeline'
]
