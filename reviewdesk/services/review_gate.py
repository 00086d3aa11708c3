"""
ReviewDesk - Review Gate
Admit fetched reviews exactly once per (business, platform, native id)
"""
import logging
from datetime import datetime
from typing import Iterable, Iterator, List, Optional

from reviewdesk.database import db, insert_or_skip
from reviewdesk.models.db_models import DBBusiness, DBReview, ReplyState, new_id
from reviewdesk.services.platform_clients import RawReview
from reviewdesk.utils import parse_timestamp

logger = logging.getLogger(__name__)

NATURAL_KEY = ['business_id', 'platform', 'platform_review_id']

POSITIVE_WORDS = [
    'great', 'excellent', 'amazing', 'wonderful', 'fantastic', 'outstanding', 'perfect',
    'love', 'awesome', 'best', 'good', 'nice', 'happy', 'satisfied', 'pleased'
]
NEGATIVE_WORDS = [
    'terrible', 'awful', 'horrible', 'worst', 'bad', 'poor', 'disappointing', 'hate',
    'rude', 'never again', 'waste'
]


def classify_sentiment(rating: int, text: str = '') -> str:
    """Rating decides; 3-star reviews fall back to keyword counts"""
    if rating >= 4:
        return 'positive'
    if rating <= 2:
        return 'negative'

    if not text:
        return 'neutral'

    lower_text = text.lower()
    positive_count = sum(1 for word in POSITIVE_WORDS if word in lower_text)
    negative_count = sum(1 for word in NEGATIVE_WORDS if word in lower_text)

    if positive_count > negative_count:
        return 'positive'
    if negative_count > positive_count:
        return 'negative'
    return 'neutral'


class ReviewGate:
    """Deduplication and persistence for incoming reviews"""

    def admit_reviews(
        self,
        business: DBBusiness,
        platform: str,
        raw_reviews: Iterable[RawReview],
        limit: Optional[int] = None,
        advance_cursor: bool = True
    ) -> List[DBReview]:
        """
        Store the reviews that aren't already known, in arrival order.

        Each insert is its own transaction and a natural-key collision is a
        silent skip, so replaying the same fetch admits nothing. The
        integration's cursor only moves once the whole sequence has been
        consumed; if iteration raises, the prior cursor stays put.

        Args:
            business: Owning tenant
            platform: Platform the reviews came from
            raw_reviews: Reviews as returned by the fetcher (consumed once)
            limit: Stop after consuming this many reviews; the cursor then
                stays put, since older reviews may be unread
            advance_cursor: False for pushed reviews, which say nothing about
                how far the platform fetch has got

        Returns:
            Newly inserted reviews only
        """
        return list(self.admit_iter(business, platform, raw_reviews, limit, advance_cursor))

    def admit_iter(
        self,
        business: DBBusiness,
        platform: str,
        raw_reviews: Iterable[RawReview],
        limit: Optional[int] = None,
        advance_cursor: bool = True
    ) -> Iterator[DBReview]:
        """Same as admit_reviews, yielding each review as soon as it is committed"""
        admitted = 0
        newest_seen = None
        consumed = 0
        skipped = 0
        truncated = False
        iterator = iter(raw_reviews)

        while True:
            # Checked before pulling, so the fetcher is never asked for another page
            if limit is not None and consumed >= limit:
                truncated = True
                break
            raw = next(iterator, None)
            if raw is None:
                break
            consumed += 1

            if raw.posted_at and (newest_seen is None or raw.posted_at > newest_seen):
                newest_seen = raw.posted_at

            review = self._insert(business.id, platform, raw)
            if review is None:
                skipped += 1
            else:
                admitted += 1
                yield review

        if advance_cursor:
            # A limited run may have left older reviews unread; only last_synced_at moves
            self._advance_cursor(business, platform, None if truncated else newest_seen)

        logger.info(
            f"Gate {business.id}/{platform}: consumed={consumed} admitted={admitted} skipped={skipped}"
            f"{' (stopped at limit)' if truncated else ''}"
        )

    def _insert(self, business_id: str, platform: str, raw: RawReview) -> Optional[DBReview]:
        review_id = new_id('rev')
        values = {
            'id': review_id,
            'business_id': business_id,
            'platform': platform,
            'platform_review_id': raw.platform_review_id,
            'author': raw.author or '',
            'rating': raw.rating,
            'body': raw.body or '',
            'review_url': raw.review_url,
            'posted_at': raw.posted_at,
            'ingested_at': datetime.utcnow(),
            'sentiment': classify_sentiment(raw.rating, raw.body or ''),
            'reply_state': ReplyState.NONE,
        }

        if not insert_or_skip(DBReview, values, NATURAL_KEY):
            return None

        return db.session.get(DBReview, review_id)

    def _advance_cursor(self, business: DBBusiness, platform: str, newest_seen: Optional[datetime]):
        integration = business.get_integration(platform)
        if integration is None:
            return

        current = parse_timestamp(integration.fetch_cursor) if integration.fetch_cursor else None
        if newest_seen and (current is None or newest_seen > current):
            integration.fetch_cursor = newest_seen.isoformat()

        integration.last_synced_at = datetime.utcnow()
        try:
            db.session.commit()
        except Exception as e:
            logger.error(f"Failed to advance cursor for {business.id}/{platform}: {e}")
            db.session.rollback()
            raise
