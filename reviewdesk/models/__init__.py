"""
ReviewDesk - Data Models
SQLAlchemy ORM models for PostgreSQL
"""
from reviewdesk.models.db_models import (
    DBBusiness as Business,
    DBIntegration as Integration,
    DBReview as Review,
    DBNotificationChannel as NotificationChannel,
    DBNotificationJob as NotificationJob,
    DBWebhookLog as WebhookLog,
    IntegrationStatus,
    ReplyState,
    NotificationChannelType,
    JobStatus
)

__all__ = [
    'Business',
    'Integration',
    'Review',
    'NotificationChannel',
    'NotificationJob',
    'WebhookLog',
    'IntegrationStatus',
    'ReplyState',
    'NotificationChannelType',
    'JobStatus'
]
