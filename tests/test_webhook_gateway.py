"""
ReviewDesk - Inbound Webhook Gateway Tests
"""
import json

from reviewdesk.database import db
from reviewdesk.models.db_models import DBIntegration, DBNotificationJob, DBReview, DBWebhookLog
from reviewdesk.services.webhook_gateway import (
    Accepted, Rejected, WebhookGateway, intuit_signature, tokens_match
)


def body(**fields):
    return json.dumps(fields).encode('utf-8')


JOB_DONE = dict(business_id='B1', event_type='job_completed', event_id='zap-1', email='cust@example.com')


class TestTokens:
    """Test constant-time token comparison"""

    def test_match(self):
        assert tokens_match('abc', 'abc') == True

    def test_mismatch_and_empty(self):
        assert tokens_match('abc', 'abd') == False
        assert tokens_match(None, 'abc') == False
        assert tokens_match('', '') == False
        assert tokens_match('abc', None) == False


class TestPing:
    """Test the unauthenticated ping"""

    def test_get_is_ok(self, settings):
        assert isinstance(WebhookGateway(settings).ping('GET'), Accepted)

    def test_other_methods_rejected(self, settings):
        for method in ('POST', 'PUT', 'DELETE'):
            result = WebhookGateway(settings).ping(method)
            assert isinstance(result, Rejected)
            assert result.status == 405


class TestZapier:
    """Test Zapier admission"""

    def test_deployment_token_accepted(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'test-zapier-token'}, body(**JOB_DONE))

        assert isinstance(result, Accepted)
        event = result.events[0]
        assert event.business_id == 'B1'
        assert event.event_type == 'job_completed'
        assert event.event_id == 'zap-1'
        assert event.data['email'] == 'cust@example.com'

    def test_business_secret_accepted(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'b1-secret'}, body(**JOB_DONE))

        assert isinstance(result, Accepted)

    def test_business_secret_only_works_for_its_business(self, business, other_business, settings):
        payload = dict(JOB_DONE, business_id='B2')

        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'b1-secret'}, body(**payload))

        assert isinstance(result, Rejected)
        assert result.status == 401

    def test_missing_token_has_no_side_effects(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('POST', {}, body(**JOB_DONE))

        assert isinstance(result, Rejected)
        assert result.status == 401
        assert DBWebhookLog.query.count() == 0

    def test_wrong_token_has_no_side_effects(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'nope'}, body(**JOB_DONE))

        assert result.status == 401
        assert DBWebhookLog.query.count() == 0

    def test_method_checked_before_token(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('GET', {}, b'')

        assert result.status == 405

    def test_token_checked_before_body(self, business, settings):
        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'nope'}, b'not json')

        assert result.status == 401

    def test_bad_body_after_auth(self, business, settings):
        headers = {'X-Zapier-Token': 'test-zapier-token'}

        result = WebhookGateway(settings).admit_zapier('POST', headers, b'not json')

        assert result.status == 400
        log = DBWebhookLog.query.one()
        assert log.status == 'error'

    def test_unsupported_event_type(self, business, settings):
        payload = dict(JOB_DONE, event_type='lead_stolen')

        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'test-zapier-token'}, body(**payload))

        assert result.status == 400
        assert 'Unsupported event type' in result.reason

    def test_missing_customer_fields(self, business, settings):
        payload = dict(business_id='B1', event_type='invoice_paid')

        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'test-zapier-token'}, body(**payload))

        assert result.status == 400

    def test_review_created_is_normalized(self, business, settings):
        payload = dict(business_id='B1', event_type='review.created', review={
            'platform': 'google', 'id': 'g-777', 'author': 'Zed', 'rating': 4, 'text': 'Nice',
            'posted_at': '2024-03-01T10:00:00Z'
        })

        result = WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'b1-secret'}, body(**payload))

        review = result.events[0].review
        assert review.platform == 'google'
        assert review.platform_review_id == 'g-777'
        assert review.rating == 4

    def test_event_id_defaults_to_body_hash(self, business, settings):
        payload = dict(JOB_DONE)
        del payload['event_id']
        gateway = WebhookGateway(settings)
        headers = {'X-Zapier-Token': 'test-zapier-token'}

        first = gateway.admit_zapier('POST', headers, body(**payload))
        second = gateway.admit_zapier('POST', headers, body(**payload))

        assert first.events[0].event_id == second.events[0].event_id
        assert first.events[0].event_id.startswith('zapier:')

    def test_gateway_writes_no_reviews_or_jobs(self, business, settings):
        payload = dict(business_id='B1', event_type='review.created',
                       review={'platform': 'google', 'id': 'g-1', 'rating': 5})

        WebhookGateway(settings).admit_zapier('POST', {'X-Zapier-Token': 'b1-secret'}, body(**payload))

        assert DBReview.query.count() == 0
        assert DBNotificationJob.query.count() == 0


class TestQuickBooks:
    """Test Intuit signature verification"""

    def _qbo_body(self, realm='realm-1'):
        return body(eventNotifications=[{
            'realmId': realm,
            'dataChangeEvent': {'entities': [
                {'name': 'Payment', 'id': '55', 'operation': 'Create', 'lastUpdated': '2024-03-01T10:00:00Z'},
                {'name': 'Invoice', 'id': '12', 'operation': 'Update', 'lastUpdated': '2024-03-01T10:00:00Z'},
            ]}
        }])

    def _connect(self):
        db.session.add(DBIntegration('B1', 'quickbooks', external_id='realm-1'))
        db.session.commit()

    def test_valid_signature(self, business, settings):
        self._connect()
        raw = self._qbo_body()
        headers = {'intuit-signature': intuit_signature('test-qbo-verifier', raw)}

        result = WebhookGateway(settings).admit_quickbooks('POST', headers, raw)

        assert isinstance(result, Accepted)
        assert [e.event_type for e in result.events] == ['payment_received', 'qbo.invoice.update']
        assert all(e.business_id == 'B1' for e in result.events)

    def test_bad_signature(self, business, settings):
        self._connect()
        raw = self._qbo_body()

        result = WebhookGateway(settings).admit_quickbooks('POST', {'intuit-signature': 'forged'}, raw)

        assert result.status == 401
        assert DBWebhookLog.query.count() == 0

    def test_missing_signature(self, business, settings):
        result = WebhookGateway(settings).admit_quickbooks('POST', {}, self._qbo_body())

        assert result.status == 401

    def test_unknown_realm_yields_no_events(self, business, settings):
        raw = self._qbo_body(realm='realm-unknown')
        headers = {'intuit-signature': intuit_signature('test-qbo-verifier', raw)}

        result = WebhookGateway(settings).admit_quickbooks('POST', headers, raw)

        assert isinstance(result, Accepted)
        assert result.events == []

    def test_malformed_entities_are_skipped(self, business, settings):
        self._connect()
        raw = body(eventNotifications=[{
            'realmId': 'realm-1',
            'dataChangeEvent': {'entities': [
                'Payment',
                None,
                {'name': 'Payment', 'id': '55', 'operation': 'Create', 'lastUpdated': '2024-03-01T10:00:00Z'},
            ]}
        }, {'realmId': 'realm-1', 'dataChangeEvent': 'garbage'}])
        headers = {'intuit-signature': intuit_signature('test-qbo-verifier', raw)}

        result = WebhookGateway(settings).admit_quickbooks('POST', headers, raw)

        assert isinstance(result, Accepted)
        assert [e.event_type for e in result.events] == ['payment_received']

    def test_wrong_method(self, settings):
        assert WebhookGateway(settings).admit_quickbooks('GET', {}, b'').status == 405
