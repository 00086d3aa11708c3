"""
ReviewDesk - SQLAlchemy Database Models
PostgreSQL-backed models for production deployment
"""
from datetime import datetime
from typing import Optional, List
import uuid
import secrets
import json

from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reviewdesk.database import db


def safe_json_loads(value, default=None):
    """Safely parse JSON, returning default if None or invalid"""
    if default is None:
        default = {}
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ============================================
# Business (tenant root)
# ============================================

class DBBusiness(db.Model):
    """A tenant: owns reviews, integrations and notification channels"""
    __tablename__ = 'businesses'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Shared secret for inbound webhooks (falls back to the deployment token)
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    reviews: Mapped[List["DBReview"]] = relationship("DBReview", back_populates="business", lazy="dynamic")
    integrations: Mapped[List["DBIntegration"]] = relationship("DBIntegration", back_populates="business", lazy="dynamic")
    channels: Mapped[List["DBNotificationChannel"]] = relationship("DBNotificationChannel", back_populates="business", lazy="dynamic")

    def __init__(self, name: str, **kwargs):
        self.id = kwargs.get('id') or new_id('biz')
        self.name = name
        self.api_key = kwargs.get('api_key') or f"rd_{secrets.token_hex(16)}"
        self.webhook_secret = kwargs.get('webhook_secret')
        self.is_active = kwargs.get('is_active', True)
        self.created_at = datetime.utcnow()

    def get_integration(self, platform: str) -> Optional["DBIntegration"]:
        return self.integrations.filter_by(platform=platform).first()

    def get_active_channels(self) -> List["DBNotificationChannel"]:
        return self.channels.filter_by(is_active=True).order_by(DBNotificationChannel.channel).all()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


# ============================================
# Integrations
# ============================================

class IntegrationStatus:
    CONNECTED = 'connected'
    ERROR = 'error'
    DISCONNECTED = 'disconnected'


class DBIntegration(db.Model):
    """A business's connection to one external system"""
    __tablename__ = 'integrations'
    __table_args__ = (
        UniqueConstraint('business_id', 'platform', name='uq_integrations_business_platform'),
    )

    REVIEW_PLATFORMS = ('google', 'yelp', 'facebook')

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(50), ForeignKey('businesses.id'), index=True)
    platform: Mapped[str] = mapped_column(String(30))  # google, yelp, facebook, zapier, quickbooks

    # Place id / Yelp business id / Facebook page id / QuickBooks realm id
    external_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=IntegrationStatus.CONNECTED)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)

    # Opaque cursor from the last successful fetch
    fetch_cursor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business: Mapped["DBBusiness"] = relationship("DBBusiness", back_populates="integrations")

    def __init__(self, business_id: str, platform: str, **kwargs):
        self.id = new_id('int')
        self.business_id = business_id
        self.platform = platform
        self.external_id = kwargs.get('external_id')
        self.access_token = kwargs.get('access_token')
        self.status = kwargs.get('status', IntegrationStatus.CONNECTED)
        self.consecutive_failures = 0
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    @property
    def is_review_source(self) -> bool:
        return self.platform in self.REVIEW_PLATFORMS

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'business_id': self.business_id,
            'platform': self.platform,
            'external_id': self.external_id,
            'status': self.status,
            'last_error': self.last_error,
            'consecutive_failures': self.consecutive_failures,
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None
        }


# ============================================
# Reviews
# ============================================

class ReplyState:
    NONE = 'none'
    GENERATING = 'generating'
    DRAFTED = 'drafted'
    SENT = 'sent'


class DBReview(db.Model):
    """Reviews from Google, Yelp, Facebook, etc."""
    __tablename__ = 'reviews'
    __table_args__ = (
        UniqueConstraint('business_id', 'platform', 'platform_review_id', name='uq_reviews_natural_key'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(50), ForeignKey('businesses.id'), index=True)

    # Review info
    platform: Mapped[str] = mapped_column(String(50))  # google, yelp, facebook
    platform_review_id: Mapped[str] = mapped_column(String(200))
    author: Mapped[str] = mapped_column(String(200), default='')
    rating: Mapped[int] = mapped_column(Integer)  # 1-5
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    sentiment: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # positive, neutral, negative

    # Reply
    reply_state: Mapped[str] = mapped_column(String(20), default=ReplyState.NONE)
    draft_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    replied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    business: Mapped["DBBusiness"] = relationship("DBBusiness", back_populates="reviews")

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'business_id': self.business_id,
            'platform': self.platform,
            'platform_review_id': self.platform_review_id,
            'author': self.author,
            'rating': self.rating,
            'body': self.body,
            'review_url': self.review_url,
            'posted_at': self.posted_at.isoformat() if self.posted_at else None,
            'ingested_at': self.ingested_at.isoformat() if self.ingested_at else None,
            'sentiment': self.sentiment,
            'reply_state': self.reply_state,
            'draft_text': self.draft_text,
            'reply_text': self.reply_text,
            'replied_at': self.replied_at.isoformat() if self.replied_at else None
        }


# ============================================
# Notifications
# ============================================

class NotificationChannelType:
    SMS = 'sms'
    EMAIL = 'email'
    WEBHOOK = 'webhook'

    ALL = (SMS, EMAIL, WEBHOOK)


class JobStatus:
    PENDING = 'pending'
    SENT = 'sent'
    FAILED = 'failed'


class DBNotificationChannel(db.Model):
    """A notification channel a business has configured"""
    __tablename__ = 'notification_channels'
    __table_args__ = (
        UniqueConstraint('business_id', 'channel', name='uq_channels_business_channel'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(50), ForeignKey('businesses.id'), index=True)
    channel: Mapped[str] = mapped_column(String(20))  # sms, email, webhook
    target: Mapped[str] = mapped_column(String(500))  # phone number, address or URL
    secret: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)  # For signing webhook payloads
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    business: Mapped["DBBusiness"] = relationship("DBBusiness", back_populates="channels")

    def __init__(self, business_id: str, channel: str, target: str, **kwargs):
        self.id = new_id('chan')
        self.business_id = business_id
        self.channel = channel
        self.target = target
        self.secret = kwargs.get('secret')
        self.is_active = kwargs.get('is_active', True)
        self.created_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'channel': self.channel,
            'target': self.target,
            'has_secret': bool(self.secret),
            'is_active': self.is_active
        }


class DBNotificationJob(db.Model):
    """One delivery of one event on one channel"""
    __tablename__ = 'notification_jobs'
    __table_args__ = (
        UniqueConstraint('business_id', 'event_id', 'channel', name='uq_jobs_idempotency_key'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(50), ForeignKey('businesses.id'), index=True)
    review_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey('reviews.id'), nullable=True, index=True)

    event_id: Mapped[str] = mapped_column(String(100))
    event_type: Mapped[str] = mapped_column(String(50))
    channel: Mapped[str] = mapped_column(String(20))
    target: Mapped[str] = mapped_column(String(500))
    payload: Mapped[str] = mapped_column(Text, default='{}')

    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SENT, JobStatus.FAILED)

    def get_payload(self) -> dict:
        return safe_json_loads(self.payload, {})

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'business_id': self.business_id,
            'review_id': self.review_id,
            'event_id': self.event_id,
            'event_type': self.event_type,
            'channel': self.channel,
            'target': self.target,
            'status': self.status,
            'attempts': self.attempts,
            'last_error': self.last_error,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None
        }


# ============================================
# Inbound webhook audit log
# ============================================

class DBWebhookLog(db.Model):
    """Log of authenticated inbound webhooks"""
    __tablename__ = 'webhook_logs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    source: Mapped[str] = mapped_column(String(30))  # zapier, quickbooks
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), default='received')  # received, processed, error
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    business_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, event_id: str, source: str, event_type: str, **kwargs):
        self.event_id = event_id
        self.source = source
        self.event_type = event_type
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'event_id': self.event_id,
            'source': self.source,
            'event_type': self.event_type,
            'status': self.status,
            'error_message': self.error_message,
            'business_id': self.business_id,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
