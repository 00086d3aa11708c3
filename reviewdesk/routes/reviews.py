"""
ReviewDesk - Reviews API Routes
Sync triggers, listing, stats, reply coach and the reply-sent action
"""
import logging
from datetime import datetime

from flask import Blueprint, request, jsonify

from reviewdesk.database import db
from reviewdesk.models.db_models import DBIntegration, DBReview, IntegrationStatus, ReplyState
from reviewdesk.routes.auth import business_key_required, internal_key_required
from reviewdesk.services.pipeline import get_review_pipeline
from reviewdesk.services.reply_coach import TONE_INSTRUCTIONS
from reviewdesk.services.review_stats import get_review_stats
from reviewdesk.utils import safe_bool, safe_int

logger = logging.getLogger(__name__)

reviews_bp = Blueprint('reviews', __name__)

SYNC_STATUS_CODES = {'ok': 200, 'unavailable': 409, 'error': 502}


# ==========================================
# Review Management
# ==========================================

@reviews_bp.route('', methods=['GET'])
@business_key_required
def get_reviews(current_business):
    """
    List reviews, newest first

    GET /api/reviews?platform=google&reply_state=none&limit=50
    """
    query = DBReview.query.filter_by(business_id=current_business.id)

    platform = request.args.get('platform')
    if platform:
        query = query.filter_by(platform=platform)

    reply_state = request.args.get('reply_state')
    if reply_state:
        query = query.filter_by(reply_state=reply_state)

    limit = safe_int(request.args.get('limit'), 100, min_val=1, max_val=500)
    reviews = query.order_by(DBReview.posted_at.desc(), DBReview.ingested_at.desc()).limit(limit).all()

    return jsonify({
        'reviews': [r.to_dict() for r in reviews],
        'total': len(reviews)
    })


@reviews_bp.route('/stats', methods=['GET'])
@business_key_required
def get_stats(current_business):
    """
    Rating, reply-time and platform summary

    GET /api/reviews/stats?window_days=30&timeseries=true
    """
    days = safe_int(request.args.get('window_days'), 30, min_val=1, max_val=365)
    include_trends = safe_bool(request.args.get('timeseries'), False)

    return jsonify(get_review_stats(current_business.id, days, include_trends=include_trends))


@reviews_bp.route('/<review_id>', methods=['GET'])
@business_key_required
def get_review(current_business, review_id):
    """Get a single review"""
    review = DBReview.query.filter_by(id=review_id, business_id=current_business.id).first()
    if not review:
        return jsonify({'error': 'Review not found'}), 404

    return jsonify({'review': review.to_dict()})


# ==========================================
# Sync
# ==========================================

@reviews_bp.route('/sync', methods=['POST'])
@business_key_required
def sync_reviews(current_business):
    """
    Pull new reviews for this business

    POST /api/reviews/sync
    {
        "business_id": "biz_xxx",      (optional, must match the API key)
        "platform": "google",          (google, yelp, facebook or all)
        "place_id": "ChIJ...",         (optional override of the stored id)
        "limit": 50
    }
    """
    data = request.get_json(silent=True) or {}

    business_id = data.get('business_id')
    if business_id and business_id != current_business.id:
        return jsonify({'error': 'Access denied'}), 403

    platform = (data.get('platform') or 'all').lower()
    if platform != 'all' and platform not in DBIntegration.REVIEW_PLATFORMS:
        return jsonify({'error': f"platform must be one of: {', '.join(DBIntegration.REVIEW_PLATFORMS)}, all"}), 400

    limit = safe_int(data.get('limit'), None, min_val=1, max_val=500) if data.get('limit') is not None else None
    pipeline = get_review_pipeline()

    if platform != 'all':
        summary = pipeline.sync(current_business, platform, limit=limit, place_id=data.get('place_id'))
        return jsonify({'summary': summary.to_dict()}), SYNC_STATUS_CODES.get(summary.status, 200)

    platforms = [
        i.platform for i in current_business.integrations.filter(
            DBIntegration.platform.in_(DBIntegration.REVIEW_PLATFORMS),
            DBIntegration.status != IntegrationStatus.DISCONNECTED
        ).all()
    ]
    if not platforms:
        return jsonify({'error': 'No connected review sources found'}), 404

    summaries = [pipeline.sync(current_business, p, limit=limit) for p in platforms]
    return jsonify({
        'total_admitted': sum(len(s.admitted) for s in summaries),
        'summaries': [s.to_dict() for s in summaries]
    })


@reviews_bp.route('/sync-all', methods=['POST'])
@internal_key_required
def sync_all_reviews():
    """
    Cron entry point: sync every connected review integration

    POST /api/reviews/sync-all  (X-Internal-Key header)
    """
    summaries = get_review_pipeline().sync_all()
    return jsonify({
        'synced': len(summaries),
        'total_admitted': sum(len(s.admitted) for s in summaries),
        'summaries': [s.to_dict() for s in summaries]
    })


# ==========================================
# Replies
# ==========================================

@reviews_bp.route('/reply-coach', methods=['POST'])
@business_key_required
def reply_coach(current_business):
    """
    Two reply suggestions for a review

    POST /api/reviews/reply-coach
    {
        "review_id": "rev_xxx",
        "tone": "friendly"   (professional, friendly, grateful, brief)
    }
    """
    data = request.get_json(silent=True) or {}
    review_id = data.get('review_id')

    if not review_id:
        return jsonify({'error': 'Missing review_id'}), 400

    review = DBReview.query.filter_by(id=review_id, business_id=current_business.id).first()
    if not review:
        return jsonify({'error': 'Review not found'}), 404

    draft = get_review_pipeline().coach.draft_for_review(review, data.get('tone'), force=True)
    if draft is None:
        return jsonify({'error': f"Review reply is {review.reply_state}, cannot draft"}), 409

    response = {
        'success': True,
        'suggestions': draft.to_dict(),
        'available_tones': list(TONE_INSTRUCTIONS.keys())
    }
    if draft.fallback:
        response['fallback'] = True

    return jsonify(response)


@reviews_bp.route('/<review_id>/reply', methods=['POST'])
@business_key_required
def mark_reply_sent(current_business, review_id):
    """
    Record the reply the owner posted on the platform

    POST /api/reviews/<review_id>/reply
    {
        "reply_text": "Thanks so much!"
    }
    """
    data = request.get_json(silent=True) or {}
    reply_text = (data.get('reply_text') or '').strip()

    if not reply_text:
        return jsonify({'error': 'reply_text is required'}), 400

    review = DBReview.query.filter_by(id=review_id, business_id=current_business.id).first()
    if not review:
        return jsonify({'error': 'Review not found'}), 404

    if review.reply_state == ReplyState.SENT:
        return jsonify({'error': 'Reply already sent'}), 409

    review.reply_text = reply_text
    review.reply_state = ReplyState.SENT
    review.replied_at = datetime.utcnow()

    try:
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to mark reply sent for {review_id}: {e}")
        db.session.rollback()
        return jsonify({'error': 'Failed to save reply'}), 500

    return jsonify({'success': True, 'review': review.to_dict()})
