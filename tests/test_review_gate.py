"""
ReviewDesk - Review Gate Tests
"""
from datetime import datetime

from reviewdesk.database import db
from reviewdesk.models.db_models import DBIntegration, DBReview, ReplyState
from reviewdesk.services.platform_clients import RawReview, ReviewFetcher
from reviewdesk.services.review_gate import ReviewGate, classify_sentiment
from tests.fakes import FakeResponse, FakeSession


def raw(native_id, rating=5, body='Great work', posted_at=None):
    return RawReview(
        platform='google',
        platform_review_id=native_id,
        author='Ann',
        rating=rating,
        body=body,
        posted_at=posted_at or datetime(2024, 3, 1, 12, 0)
    )


class TestSentiment:
    """Test sentiment classification"""

    def test_rating_decides(self):
        assert classify_sentiment(5, 'terrible') == 'positive'
        assert classify_sentiment(1, 'great') == 'negative'

    def test_three_stars_use_keywords(self):
        assert classify_sentiment(3, 'Good food, nice staff') == 'positive'
        assert classify_sentiment(3, 'Bad parking and poor signage') == 'negative'
        assert classify_sentiment(3, 'It was fine') == 'neutral'
        assert classify_sentiment(3, '') == 'neutral'


class TestAdmitReviews:
    """Test deduplication and persistence"""

    def test_admits_new_review(self, business):
        admitted = ReviewGate().admit_reviews(business, 'google', [raw('g-123')])

        assert len(admitted) == 1
        review = admitted[0]
        assert review.business_id == 'B1'
        assert review.platform_review_id == 'g-123'
        assert review.reply_state == ReplyState.NONE
        assert review.sentiment == 'positive'

    def test_replay_admits_nothing(self, business):
        gate = ReviewGate()
        batch = [raw('g-1'), raw('g-2')]

        first = gate.admit_reviews(business, 'google', list(batch))
        second = gate.admit_reviews(business, 'google', list(batch))

        assert len(first) == 2
        assert second == []
        assert DBReview.query.filter_by(business_id='B1').count() == 2

    def test_duplicates_within_one_fetch(self, business):
        admitted = ReviewGate().admit_reviews(business, 'google', [raw('g-1'), raw('g-1'), raw('g-2')])

        assert [r.platform_review_id for r in admitted] == ['g-1', 'g-2']

    def test_arrival_order_is_kept(self, business):
        batch = [raw('g-3'), raw('g-1'), raw('g-2')]

        admitted = ReviewGate().admit_reviews(business, 'google', batch)

        assert [r.platform_review_id for r in admitted] == ['g-3', 'g-1', 'g-2']

    def test_cursor_advances_to_newest(self, business):
        batch = [
            raw('g-1', posted_at=datetime(2024, 3, 1)),
            raw('g-2', posted_at=datetime(2024, 3, 5)),
            raw('g-3', posted_at=datetime(2024, 3, 3)),
        ]

        ReviewGate().admit_reviews(business, 'google', batch)

        integration = business.get_integration('google')
        assert integration.fetch_cursor == '2024-03-05T00:00:00'
        assert integration.last_synced_at is not None

    def test_cursor_never_moves_backwards(self, business):
        integration = business.get_integration('google')
        integration.fetch_cursor = '2024-06-01T00:00:00'
        db.session.commit()

        ReviewGate().admit_reviews(business, 'google', [raw('g-old', posted_at=datetime(2024, 1, 1))])

        assert integration.fetch_cursor == '2024-06-01T00:00:00'

    def test_last_sync_advances_with_zero_admissions(self, business):
        gate = ReviewGate()
        gate.admit_reviews(business, 'google', [raw('g-123')])
        integration = business.get_integration('google')
        integration.last_synced_at = datetime(2000, 1, 1)
        db.session.commit()

        admitted = gate.admit_reviews(business, 'google', [raw('g-123')])

        assert admitted == []
        assert integration.last_synced_at > datetime(2000, 1, 1)

    def test_failed_fetch_keeps_prior_cursor(self, business):
        def failing():
            yield raw('g-1', posted_at=datetime(2024, 5, 1))
            raise RuntimeError('connection dropped')

        try:
            ReviewGate().admit_reviews(business, 'google', failing())
        except RuntimeError:
            pass

        integration = business.get_integration('google')
        assert integration.fetch_cursor is None
        # Rows committed before the failure stay, so a retry skips them
        assert DBReview.query.filter_by(platform_review_id='g-1').count() == 1

    def test_limit_keeps_cursor_for_newest_first_pages(self, business, settings):
        db.session.add(DBIntegration('B1', 'facebook', external_id='page-1', access_token='page-token'))
        db.session.commit()

        def rating(native_id, day):
            return {'id': native_id, 'rating': 5, 'review_text': 'Great',
                    'created_time': f"2024-03-{day:02d}T00:00:00+0000", 'reviewer': {'name': 'Dee'}}

        first_page = FakeResponse(200, {
            'data': [rating('fb-3', 9)],
            'paging': {'next': 'https://graph.facebook.com/v18.0/page-1/ratings?after=p2'}
        })
        limited = FakeSession(first_page)
        gate = ReviewGate()

        admitted = gate.admit_reviews(
            business, 'facebook',
            ReviewFetcher(settings, session=limited).fetch_reviews(business, 'facebook'),
            limit=1
        )

        integration = business.get_integration('facebook')
        assert [r.platform_review_id for r in admitted] == ['fb-3']
        assert integration.fetch_cursor is None
        assert integration.last_synced_at is not None
        assert len(limited.calls) == 1

        full = FakeSession(FakeResponse(200, {'data': [rating('fb-3', 9), rating('fb-2', 2), rating('fb-1', 1)]}))
        admitted = gate.admit_reviews(
            business, 'facebook',
            ReviewFetcher(settings, session=full).fetch_reviews(business, 'facebook', integration.fetch_cursor)
        )

        assert 'since' not in full.calls[0]['params']
        assert [r.platform_review_id for r in admitted] == ['fb-2', 'fb-1']
        assert integration.fetch_cursor == '2024-03-09T00:00:00'

    def test_tenants_are_isolated(self, business, other_business):
        gate = ReviewGate()

        gate.admit_reviews(business, 'google', [raw('g-123')])
        admitted = gate.admit_reviews(other_business, 'google', [raw('g-123')])

        assert len(admitted) == 1
        assert admitted[0].business_id == 'B2'

    def test_pushed_reviews_leave_cursor_alone(self, business):
        ReviewGate().admit_reviews(business, 'google', [raw('g-9')], advance_cursor=False)

        integration = business.get_integration('google')
        assert integration.fetch_cursor is None
        assert integration.last_synced_at is None
