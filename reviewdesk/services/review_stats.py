"""
ReviewDesk - Review Statistics
Rating, reply and platform summaries for the dashboard
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from reviewdesk.models.db_models import DBReview, ReplyState


def review_date(review: DBReview) -> datetime:
    """When the customer posted the review, or when we first saw it"""
    return review.posted_at or review.ingested_at


def _average(values) -> float:
    values = list(values)
    return round(sum(values) / len(values), 1) if values else 0


def get_review_stats(business_id: str, days: int = 30, include_trends: bool = False,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Summarize one business's reviews from the last `days` days.

    Response time is measured from the review date to the moment the owner
    marked a reply sent. Weekly trends are most recent first.
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=days)

    reviews = DBReview.query.filter(
        DBReview.business_id == business_id,
        func.coalesce(DBReview.posted_at, DBReview.ingested_at) >= cutoff
    ).all()

    by_platform = {}
    by_sentiment = {'positive': 0, 'neutral': 0, 'negative': 0}
    response_hours = []

    for review in reviews:
        platform = by_platform.setdefault(review.platform, {'count': 0, 'total_rating': 0})
        platform['count'] += 1
        platform['total_rating'] += review.rating

        sentiment = review.sentiment or 'neutral'
        by_sentiment[sentiment] = by_sentiment.get(sentiment, 0) + 1

        if review.reply_state == ReplyState.SENT and review.replied_at:
            elapsed = (review.replied_at - review_date(review)).total_seconds() / 3600
            response_hours.append(max(elapsed, 0.0))

    total = len(reviews)
    replied = sum(1 for r in reviews if r.reply_state == ReplyState.SENT)

    stats = {
        'period_days': days,
        'total': total,
        'average_rating': _average(r.rating for r in reviews),
        'average_response_hours': _average(response_hours),
        'reply_rate': round(replied / total * 100, 1) if total else 0,
        'pending_replies': total - replied,
        'by_platform': {
            name: {'count': data['count'], 'average_rating': round(data['total_rating'] / data['count'], 1)}
            for name, data in by_platform.items()
        },
        'by_sentiment': by_sentiment
    }
    if include_trends:
        stats['weekly'] = weekly_trends(reviews, days, now)

    return stats


def weekly_trends(reviews: List[DBReview], days: int, now: datetime) -> List[Dict[str, Any]]:
    """Seven-day buckets covering the window, newest first"""
    trends = []
    window_start = now - timedelta(days=days)

    for week in range(math.ceil(days / 7)):
        week_start = window_start + timedelta(days=7 * week)
        week_end = week_start + timedelta(days=7)
        ratings = [r.rating for r in reviews if week_start <= review_date(r) < week_end]
        trends.append({
            'week_start': week_start.date().isoformat(),
            'count': len(ratings),
            'average_rating': _average(ratings)
        })

    trends.reverse()
    return trends
