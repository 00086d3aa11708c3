"""
ReviewDesk - Inbound Webhook Routes
Zapier and QuickBooks push events here

Every endpoint accepts all methods so the gateway, not Flask, decides
which one is allowed and answers the rest with a JSON 405.
"""
from flask import Blueprint, request, jsonify
import logging

from reviewdesk.services.pipeline import get_review_pipeline
from reviewdesk.services.webhook_gateway import Rejected

logger = logging.getLogger(__name__)
webhooks_bp = Blueprint('webhooks', __name__)

ALL_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']


def _rejection(result: Rejected):
    return jsonify({'ok': False, 'error': result.reason}), result.status


def _ingest(result):
    if isinstance(result, Rejected):
        return _rejection(result)

    try:
        processed = get_review_pipeline().ingest_inbound(result)
    except Exception as e:
        logger.error(f"Inbound webhook processing failed: {e}")
        return jsonify({'ok': False, 'error': 'Internal server error'}), 500

    return jsonify({
        'ok': True,
        'log_id': result.log_id,
        'events': processed['events'],
        'admitted': processed['admitted'],
        'notifications': processed['notifications']
    })


# ==========================================
# ZAPIER
# ==========================================

@webhooks_bp.route('/zapier', methods=ALL_METHODS)
def zapier_event():
    """
    Receive an event from a Zap

    POST /api/webhooks/zapier
    Headers: X-Zapier-Token
    {
        "business_id": "biz_xxx",
        "event_type": "job_completed",    (or review.created, invoice_paid, ...)
        "event_id": "optional-stable-id",
        "email": "customer@example.com",
        "payload": {...}
    }
    """
    gateway = get_review_pipeline().gateway
    result = gateway.admit_zapier(request.method, request.headers, request.get_data(cache=True))
    return _ingest(result)


@webhooks_bp.route('/zapier/ping', methods=ALL_METHODS)
def zapier_ping():
    """Unauthenticated health check for Zap setup"""
    result = get_review_pipeline().gateway.ping(request.method)
    if isinstance(result, Rejected):
        return _rejection(result)
    return jsonify({'ok': True})


# ==========================================
# QUICKBOOKS
# ==========================================

@webhooks_bp.route('/quickbooks', methods=ALL_METHODS)
def quickbooks_event():
    """
    Receive Intuit data-change notifications

    POST /api/webhooks/quickbooks
    Headers: intuit-signature (base64 HMAC-SHA256 of the body)
    """
    gateway = get_review_pipeline().gateway
    result = gateway.admit_quickbooks(request.method, request.headers, request.get_data(cache=True))
    return _ingest(result)


@webhooks_bp.route('/quickbooks/ping', methods=ALL_METHODS)
def quickbooks_ping():
    """Unauthenticated health check"""
    result = get_review_pipeline().gateway.ping(request.method)
    if isinstance(result, Rejected):
        return _rejection(result)
    return jsonify({'ok': True})
