"""
ReviewDesk - Review Platform Clients
Fetch raw reviews from Google Places, Yelp Fusion and the Facebook Graph API
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

import requests

from reviewdesk.config import PipelineSettings
from reviewdesk.exceptions import IntegrationUnavailable, PlatformError, FetchTimeout
from reviewdesk.models.db_models import DBBusiness, DBIntegration, IntegrationStatus
from reviewdesk.services.http_client import CallResult, call_json
from reviewdesk.utils import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class RawReview:
    """One review as a platform returned it, normalized to common fields"""
    platform: str
    platform_review_id: str
    author: str
    rating: int
    body: str = ''
    posted_at: Optional[datetime] = None
    review_url: Optional[str] = None


def clamp_rating(value, default: int = 3) -> int:
    try:
        rating = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(1, min(5, rating))


def raise_for_result(platform: str, result: CallResult, timeout: float):
    """Turn a failed CallResult into the fetch error taxonomy"""
    if result.ok:
        return
    if result.timed_out:
        raise FetchTimeout(platform, timeout)
    if result.status_code in (401, 403):
        raise IntegrationUnavailable(platform, f"credential rejected ({result.status_code})")
    raise PlatformError(platform, result.error or 'request failed',
                        status_code=result.status_code, rate_limited=result.rate_limited)


class PlatformClient:
    """Base class for one review platform"""

    platform = ''

    def __init__(self, settings: PipelineSettings, session: requests.Session = None):
        self.settings = settings
        self.session = session
        self.timeout = settings.fetch_timeout

    def _get(self, url: str, **kwargs) -> dict:
        result = call_json('GET', url, self.timeout, session=self.session, **kwargs)
        raise_for_result(self.platform, result, self.timeout)
        if not isinstance(result.data, dict):
            raise PlatformError(self.platform, 'malformed response body', status_code=result.status_code)
        return result.data

    def iter_reviews(self, integration: DBIntegration, external_id: str,
                     since: Optional[datetime]) -> Iterator[RawReview]:
        raise NotImplementedError


# ==========================================
# Google Places
# ==========================================

class GooglePlacesClient(PlatformClient):
    """Google Places Details API (returns the most relevant ~5 reviews)"""

    platform = 'google'
    DETAILS_URL = 'https://maps.googleapis.com/maps/api/place/details/json'

    def iter_reviews(self, integration, external_id, since):
        api_key = self.settings.google_places_api_key or integration.access_token
        if not api_key:
            raise IntegrationUnavailable(self.platform, 'Google Places API key not configured')

        data = self._get(self.DETAILS_URL, params={
            'place_id': external_id,
            'fields': 'reviews,url',
            'reviews_sort': 'newest',
            'key': api_key
        })

        status = data.get('status')
        if status in ('REQUEST_DENIED', 'NOT_FOUND', 'INVALID_REQUEST'):
            raise IntegrationUnavailable(self.platform, f"Places API status {status}: {data.get('error_message', '')}")
        if status == 'OVER_QUERY_LIMIT':
            raise PlatformError(self.platform, 'Places API quota exceeded', rate_limited=True)
        if status not in ('OK', 'ZERO_RESULTS'):
            raise PlatformError(self.platform, f"Places API status {status}")

        result = data.get('result') or {}
        place_url = result.get('url') or f"https://maps.google.com/?cid={external_id}"

        for review in result.get('reviews') or []:
            if review.get('time') is None:
                logger.warning(f"Skipping Google review without timestamp for place {external_id}")
                continue
            yield RawReview(
                platform=self.platform,
                platform_review_id=str(review['time']),
                author=review.get('author_name') or 'Anonymous',
                rating=clamp_rating(review.get('rating')),
                body=review.get('text') or '',
                posted_at=parse_timestamp(review['time']),
                review_url=place_url
            )


# ==========================================
# Yelp Fusion
# ==========================================

class YelpClient(PlatformClient):
    """Yelp Fusion reviews endpoint (bearer auth)"""

    platform = 'yelp'
    REVIEWS_URL = 'https://api.yelp.com/v3/businesses/{business_id}/reviews'

    def iter_reviews(self, integration, external_id, since):
        api_key = self.settings.yelp_api_key or integration.access_token
        if not api_key:
            raise IntegrationUnavailable(self.platform, 'Yelp API key not configured')

        data = self._get(
            self.REVIEWS_URL.format(business_id=external_id),
            headers={'Authorization': f'Bearer {api_key}', 'Accept': 'application/json'},
            params={'sort_by': 'newest', 'limit': 50}
        )

        for review in data.get('reviews') or []:
            if not review.get('id'):
                continue
            yield RawReview(
                platform=self.platform,
                platform_review_id=str(review['id']),
                author=(review.get('user') or {}).get('name') or 'Anonymous',
                rating=clamp_rating(review.get('rating')),
                body=review.get('text') or '',
                posted_at=parse_timestamp(review.get('time_created')),
                review_url=review.get('url')
            )


# ==========================================
# Facebook Graph
# ==========================================

class FacebookClient(PlatformClient):
    """Page ratings from the Graph API, following paging.next"""

    platform = 'facebook'
    MAX_PAGES = 20

    def iter_reviews(self, integration, external_id, since):
        if not integration.access_token:
            raise IntegrationUnavailable(self.platform, 'page access token missing')

        version = self.settings.facebook_graph_version
        url = f"https://graph.facebook.com/{version}/{external_id}/ratings"
        params = {
            'access_token': integration.access_token,
            'fields': 'rating,recommendation_type,review_text,created_time,reviewer{name,id},open_graph_story{id}',
            'limit': 100
        }
        if since:
            params['since'] = int(since.replace(tzinfo=timezone.utc).timestamp())

        pages = 0
        while url and pages < self.MAX_PAGES:
            data = self._get(url, params=params)
            pages += 1

            if 'error' in data:
                raise PlatformError(self.platform, str(data['error'].get('message', data['error'])))

            for item in data.get('data') or []:
                raw = self._normalize(item)
                if raw:
                    yield raw

            # paging.next already carries every query parameter
            url = (data.get('paging') or {}).get('next')
            params = None

    def _normalize(self, item: dict) -> Optional[RawReview]:
        reviewer = item.get('reviewer') or {}
        story_id = (item.get('open_graph_story') or {}).get('id')
        native_id = item.get('id') or story_id
        if not native_id and reviewer.get('id') and item.get('created_time'):
            native_id = f"{reviewer['id']}_{item['created_time']}"
        if not native_id:
            logger.warning("Skipping Facebook rating without an identifier")
            return None

        if item.get('rating') is not None:
            rating = clamp_rating(item['rating'])
        else:
            # Recommendations replaced star ratings on pages
            rating = 5 if item.get('recommendation_type') == 'positive' else 1

        return RawReview(
            platform=self.platform,
            platform_review_id=str(native_id),
            author=reviewer.get('name') or 'Facebook user',
            rating=rating,
            body=item.get('review_text') or '',
            posted_at=parse_timestamp(item.get('created_time')),
            review_url=f"https://facebook.com/{native_id}"
        )


# ==========================================
# Fetcher
# ==========================================

class ReviewFetcher:
    """Pick the right platform client and check the integration first"""

    CLIENTS = {
        'google': GooglePlacesClient,
        'yelp': YelpClient,
        'facebook': FacebookClient,
    }

    def __init__(self, settings: PipelineSettings, session: requests.Session = None,
                 clients: Dict[str, PlatformClient] = None):
        self.settings = settings
        self.clients = clients or {name: cls(settings, session) for name, cls in self.CLIENTS.items()}

    def fetch_reviews(
        self,
        business: DBBusiness,
        platform: str,
        since_cursor: Optional[str] = None,
        external_id: Optional[str] = None
    ) -> Iterator[RawReview]:
        """
        Fetch raw reviews for one business from one platform.

        Integration problems are raised right away; network failures surface
        while the returned iterator is consumed. The iterator can only be
        walked once.

        Args:
            business: Tenant to fetch for
            platform: google, yelp or facebook
            since_cursor: ISO timestamp of the newest review already seen
            external_id: Override for the integration's place/business/page id

        Raises:
            IntegrationUnavailable, PlatformError, FetchTimeout
        """
        client = self.clients.get(platform)
        if client is None:
            raise IntegrationUnavailable(platform, 'unsupported review platform')

        integration = business.get_integration(platform)
        if integration is None:
            raise IntegrationUnavailable(platform, 'no integration configured')
        if integration.status == IntegrationStatus.DISCONNECTED:
            raise IntegrationUnavailable(platform, 'integration is disconnected')

        target = external_id or integration.external_id
        if not target:
            raise IntegrationUnavailable(platform, 'no external id configured')

        since = parse_timestamp(since_cursor) if since_cursor else None
        logger.info(f"Fetching {platform} reviews for {business.id} (since={since_cursor or 'beginning'})")

        return client.iter_reviews(integration, target, since)
