"""
ReviewDesk - Notification Routes
Channel configuration and delivery job inspection
"""
from flask import Blueprint, request, jsonify
import logging

from reviewdesk.database import db
from reviewdesk.models.db_models import (
    DBNotificationChannel, DBNotificationJob, JobStatus, NotificationChannelType
)
from reviewdesk.routes.auth import business_key_required
from reviewdesk.utils import safe_bool, safe_int

logger = logging.getLogger(__name__)
notifications_bp = Blueprint('notifications', __name__)


def validate_target(channel: str, target: str):
    """Returns an error message, or None when the target fits the channel"""
    if not target:
        return 'target is required'
    if not isinstance(target, str):
        return 'target must be a string'
    if channel == NotificationChannelType.WEBHOOK and not target.startswith(('http://', 'https://')):
        return 'webhook target must start with http:// or https://'
    if channel == NotificationChannelType.EMAIL and '@' not in target:
        return 'email target must be an email address'
    if channel == NotificationChannelType.SMS and not target.lstrip('+').isdigit():
        return 'sms target must be a phone number in E.164 format'
    return None


# ==========================================
# Jobs
# ==========================================

@notifications_bp.route('/jobs', methods=['GET'])
@business_key_required
def list_jobs(current_business):
    """
    Delivery jobs, newest first

    GET /api/notifications/jobs?status=failed&channel=sms&limit=50
    """
    query = DBNotificationJob.query.filter_by(business_id=current_business.id)

    status = request.args.get('status')
    if status:
        if status not in (JobStatus.PENDING, JobStatus.SENT, JobStatus.FAILED):
            return jsonify({'error': 'status must be pending, sent or failed'}), 400
        query = query.filter_by(status=status)

    channel = request.args.get('channel')
    if channel:
        query = query.filter_by(channel=channel)

    limit = safe_int(request.args.get('limit'), 100, min_val=1, max_val=500)
    jobs = query.order_by(DBNotificationJob.created_at.desc()).limit(limit).all()

    return jsonify({
        'jobs': [j.to_dict() for j in jobs],
        'total': len(jobs)
    })


# ==========================================
# Channels
# ==========================================

@notifications_bp.route('/channels', methods=['GET'])
@business_key_required
def list_channels(current_business):
    """GET /api/notifications/channels"""
    channels = current_business.channels.order_by(DBNotificationChannel.channel).all()
    return jsonify({'channels': [c.to_dict() for c in channels]})


@notifications_bp.route('/channels', methods=['PUT'])
@business_key_required
def update_channels(current_business):
    """
    Create or update channels (one per type)

    PUT /api/notifications/channels
    {
        "channels": [
            {"channel": "sms", "target": "+15551234567"},
            {"channel": "email", "target": "owner@example.com"},
            {"channel": "webhook", "target": "https://example.com/hook", "secret": "s3cret"},
            {"channel": "sms", "is_active": false}
        ]
    }
    """
    data = request.get_json(silent=True) or {}
    items = data.get('channels')

    if not isinstance(items, list) or not items:
        return jsonify({'error': 'channels must be a non-empty list'}), 400

    for item in items:
        if not isinstance(item, dict):
            db.session.rollback()
            return jsonify({'error': 'each channel must be an object'}), 400
        if item.get('secret') is not None and not isinstance(item.get('secret'), str):
            db.session.rollback()
            return jsonify({'error': 'secret must be a string'}), 400

        channel = item.get('channel')
        if channel not in NotificationChannelType.ALL:
            db.session.rollback()
            return jsonify({'error': f"channel must be one of: {', '.join(NotificationChannelType.ALL)}"}), 400

        existing = current_business.channels.filter_by(channel=channel).first()
        target = item.get('target', existing.target if existing else None)
        error = validate_target(channel, target)
        if error:
            db.session.rollback()
            return jsonify({'error': f"{channel}: {error}"}), 400

        if existing is None:
            existing = DBNotificationChannel(current_business.id, channel, target)
            db.session.add(existing)
        existing.target = target
        if 'secret' in item:
            existing.secret = item.get('secret') or None
        existing.is_active = safe_bool(item.get('is_active'), True)

    try:
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to save channels for {current_business.id}: {e}")
        db.session.rollback()
        return jsonify({'error': 'Failed to save channels'}), 500

    channels = current_business.channels.order_by(DBNotificationChannel.channel).all()
    return jsonify({'channels': [c.to_dict() for c in channels]})
