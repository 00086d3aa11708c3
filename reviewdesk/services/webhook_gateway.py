"""
ReviewDesk - Inbound Webhook Gateway
Authenticate pushes from Zapier and QuickBooks before anything is stored
"""
import base64
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from reviewdesk.config import PipelineSettings
from reviewdesk.database import db
from reviewdesk.models.db_models import DBBusiness, DBIntegration, DBWebhookLog, IntegrationStatus
from reviewdesk.services.platform_clients import RawReview, clamp_rating
from reviewdesk.utils import parse_timestamp

logger = logging.getLogger(__name__)

EVENT_REVIEW_CREATED = 'review.created'
BUSINESS_EVENTS = ['job_completed', 'invoice_paid', 'service_scheduled', 'payment_received']
ZAPIER_EVENTS = [EVENT_REVIEW_CREATED] + BUSINESS_EVENTS


@dataclass
class InboundEvent:
    """A normalized, authenticated event"""
    source: str
    event_type: str
    event_id: str
    business_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    review: Optional[RawReview] = None


@dataclass
class Accepted:
    events: List[InboundEvent] = field(default_factory=list)
    log_id: Optional[str] = None


@dataclass
class Rejected:
    reason: str
    status: int

    UNAUTHORIZED = 401
    METHOD_NOT_ALLOWED = 405
    BAD_REQUEST = 400


AdmitResult = Union[Accepted, Rejected]


def tokens_match(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; empty values never match"""
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode('utf-8'), expected.encode('utf-8'))


def intuit_signature(verifier_token: str, body: bytes) -> str:
    digest = hmac.new(verifier_token.encode('utf-8'), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


class WebhookGateway:
    """
    Method check, then authentication, then body normalization.

    Holds no business logic: accepted events go back to the caller, which
    hands them to the review gate or the notification dispatcher.
    """

    ZAPIER_METHOD = 'POST'
    QUICKBOOKS_METHOD = 'POST'
    PING_METHOD = 'GET'

    def __init__(self, settings: PipelineSettings):
        self.settings = settings

    # ==========================================
    # Ping
    # ==========================================

    def ping(self, method: str) -> AdmitResult:
        if method.upper() != self.PING_METHOD:
            return Rejected('Method not allowed', Rejected.METHOD_NOT_ALLOWED)
        return Accepted()

    # ==========================================
    # Zapier
    # ==========================================

    def admit_zapier(self, method: str, headers, body: bytes) -> AdmitResult:
        """Admit a Zapier push authenticated with X-Zapier-Token"""
        if method.upper() != self.ZAPIER_METHOD:
            return Rejected('Method not allowed', Rejected.METHOD_NOT_ALLOWED)

        data = self._load_json(body)
        fields = data if isinstance(data, dict) else {}
        claimed_business_id = headers.get('X-Business-Id') or fields.get('business_id')

        business = self._authenticate_zapier(headers.get('X-Zapier-Token'), claimed_business_id)
        if business is False:
            logger.warning(f"Rejected Zapier webhook for business {claimed_business_id}: bad token")
            return Rejected('unauthorized', Rejected.UNAUTHORIZED)

        log = self._log('zapier', fields.get('event_type'), body, business.id if business else None)

        if not isinstance(data, dict):
            return self._reject_body(log, 'No JSON body provided')
        if business is None:
            return self._reject_body(log, 'Unknown or missing business_id')

        event_type = data.get('event_type')
        if event_type not in ZAPIER_EVENTS:
            return self._reject_body(log, f"Unsupported event type. Supported: {', '.join(ZAPIER_EVENTS)}")

        event_id = str(data.get('event_id') or f"zapier:{hashlib.sha256(body).hexdigest()[:32]}")
        review = None
        if event_type == EVENT_REVIEW_CREATED:
            review = self._normalize_review(data.get('review'))
            if review is None:
                return self._reject_body(log, 'review.created needs review.platform, review.id and review.rating')
        elif not (data.get('email') or data.get('external_id') or data.get('payload')):
            return self._reject_body(log, 'Missing required fields: email, external_id or payload')

        event_data = {k: v for k, v in data.items() if k not in ('business_id', 'event_type', 'event_id', 'review')}
        event = InboundEvent('zapier', event_type, event_id, business.id, data=event_data, review=review)
        return Accepted([event], log_id=log.event_id)

    def _authenticate_zapier(self, token: Optional[str], business_id: Optional[str]):
        """
        Returns the business (or None when no business was named) on success,
        False on failure.
        """
        business = None
        if business_id:
            business = db.session.get(DBBusiness, str(business_id))
            if business is not None and not business.is_active:
                business = None

        if business is not None and tokens_match(token, business.webhook_secret):
            return business
        if tokens_match(token, self.settings.zapier_token):
            return business
        return False

    @staticmethod
    def _normalize_review(review: Any) -> Optional[RawReview]:
        if not isinstance(review, dict):
            return None
        platform = str(review.get('platform') or '').lower()
        native_id = review.get('platform_review_id') or review.get('id')
        if platform not in DBIntegration.REVIEW_PLATFORMS or not native_id or review.get('rating') is None:
            return None
        return RawReview(
            platform=platform,
            platform_review_id=str(native_id),
            author=review.get('author') or review.get('reviewer_name') or 'Anonymous',
            rating=clamp_rating(review.get('rating')),
            body=review.get('body') or review.get('text') or '',
            posted_at=parse_timestamp(review.get('posted_at') or review.get('created_at')),
            review_url=review.get('review_url') or review.get('url')
        )

    # ==========================================
    # QuickBooks
    # ==========================================

    def admit_quickbooks(self, method: str, headers, body: bytes) -> AdmitResult:
        """Admit an Intuit webhook signed with the verifier token"""
        if method.upper() != self.QUICKBOOKS_METHOD:
            return Rejected('Method not allowed', Rejected.METHOD_NOT_ALLOWED)

        verifier = self.settings.qbo_webhook_verifier_token
        signature = headers.get('intuit-signature')
        if not verifier or not signature or not tokens_match(signature, intuit_signature(verifier, body)):
            logger.warning('Rejected QuickBooks webhook: invalid signature')
            return Rejected('Invalid signature', Rejected.UNAUTHORIZED)

        data = self._load_json(body)
        log = self._log('quickbooks', 'eventNotifications', body, None)
        if not isinstance(data, dict):
            return self._reject_body(log, 'No JSON body provided')

        notifications = data.get('eventNotifications')
        if not isinstance(notifications, list):
            return self._reject_body(log, 'eventNotifications must be a list')

        events = []
        for notification in notifications:
            events.extend(self._normalize_qbo(notification))
        return Accepted(events, log_id=log.event_id)

    def _normalize_qbo(self, notification: Any) -> List[InboundEvent]:
        if not isinstance(notification, dict):
            return []
        realm_id = notification.get('realmId')
        change = notification.get('dataChangeEvent')
        entities = change.get('entities') if isinstance(change, dict) else None
        if not isinstance(entities, list):
            entities = []
        if not realm_id:
            return []

        integration = DBIntegration.query.filter(
            DBIntegration.platform == 'quickbooks',
            DBIntegration.external_id == str(realm_id),
            DBIntegration.status != IntegrationStatus.DISCONNECTED
        ).first()
        if integration is None:
            logger.warning(f"No active QuickBooks integration for realm {realm_id}")
            return []

        events = []
        for entity in entities:
            if not isinstance(entity, dict):
                logger.warning(f"Skipping malformed QuickBooks entity for realm {realm_id}")
                continue
            name = str(entity.get('name') or '')
            operation = str(entity.get('operation') or '')
            if name == 'Payment' and operation == 'Create':
                event_type = 'payment_received'
            else:
                event_type = f"qbo.{name.lower()}.{operation.lower()}"
            events.append(InboundEvent(
                source='quickbooks',
                event_type=event_type,
                event_id=f"qbo:{realm_id}:{name}:{entity.get('id')}:{operation}:{entity.get('lastUpdated', '')}",
                business_id=integration.business_id,
                data={'realm_id': str(realm_id), 'entity': name, 'entity_id': entity.get('id'),
                      'operation': operation, 'last_updated': entity.get('lastUpdated')}
            ))
        return events

    # ==========================================
    # Helpers
    # ==========================================

    @staticmethod
    def _load_json(body: bytes):
        if not body:
            return None
        try:
            return json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None

    @staticmethod
    def _log(source: str, event_type: Optional[str], body: bytes, business_id: Optional[str]) -> DBWebhookLog:
        log = DBWebhookLog(
            event_id=f"whlog_{uuid.uuid4().hex[:16]}",
            source=source,
            event_type=str(event_type or 'unknown')[:100],
            payload=body.decode('utf-8', errors='replace')[:10000] if body else None,
            business_id=business_id
        )
        db.session.add(log)
        db.session.commit()
        return log

    @staticmethod
    def _reject_body(log: DBWebhookLog, reason: str) -> Rejected:
        log.status = 'error'
        log.error_message = reason
        db.session.commit()
        return Rejected(reason, Rejected.BAD_REQUEST)
