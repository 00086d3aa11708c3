"""
ReviewDesk - Test fixtures
"""
import pytest

from reviewdesk import create_app
from reviewdesk.database import db
from reviewdesk.models.db_models import DBBusiness, DBIntegration, DBNotificationChannel


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def settings(app):
    return app.extensions['pipeline_settings']


@pytest.fixture
def business(app):
    """Business B1 with a connected Google integration"""
    business = DBBusiness(name='B1 Plumbing', id='B1', api_key='rd_b1key', webhook_secret='b1-secret')
    db.session.add(business)
    db.session.add(DBIntegration('B1', 'google', external_id='place-b1'))
    db.session.commit()
    return business


@pytest.fixture
def other_business(app):
    business = DBBusiness(name='B2 Bakery', id='B2', api_key='rd_b2key')
    db.session.add(business)
    db.session.add(DBIntegration('B2', 'google', external_id='place-b2'))
    db.session.commit()
    return business


@pytest.fixture
def channels(business):
    """SMS, email and webhook channels for B1"""
    rows = [
        DBNotificationChannel('B1', 'sms', '+15550001111'),
        DBNotificationChannel('B1', 'email', 'owner@b1.example'),
        DBNotificationChannel('B1', 'webhook', 'https://hooks.b1.example/reviews', secret='hook-secret'),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return business.get_active_channels()


@pytest.fixture
def api_headers():
    return {'X-API-Key': 'rd_b1key'}
