#!/usr/bin/env python3
"""
ReviewDesk - Create Business
Creates a tenant and prints its API key, optionally with review integrations.

Usage:
    python scripts/create_business.py "Joe's Plumbing"

Or with environment variables:
    BUSINESS_NAME="Joe's Plumbing" GOOGLE_PLACE_ID=ChIJ... python scripts/create_business.py
"""
import os
import sys
import secrets

# Add parent directory to path so we can import the app
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from reviewdesk import create_app
from reviewdesk.database import db
from reviewdesk.models.db_models import DBBusiness, DBIntegration


def create_business(name: str):
    """Create the business and any integrations named in the environment"""
    app = create_app()

    with app.app_context():
        business = DBBusiness(name=name, webhook_secret=f"whsec_{secrets.token_hex(16)}")
        db.session.add(business)
        db.session.flush()

        sources = {
            'google': (os.environ.get('GOOGLE_PLACE_ID'), None),
            'yelp': (os.environ.get('YELP_BUSINESS_ID'), None),
            'facebook': (os.environ.get('FACEBOOK_PAGE_ID'), os.environ.get('FACEBOOK_PAGE_TOKEN')),
            'quickbooks': (os.environ.get('QBO_REALM_ID'), None),
        }
        created = []
        for platform, (external_id, token) in sources.items():
            if external_id:
                db.session.add(DBIntegration(business.id, platform, external_id=external_id, access_token=token))
                created.append(platform)

        db.session.commit()

        print("\n" + "=" * 50)
        print(f"  ✓ Business created: {business.name}")
        print("=" * 50)
        print(f"  ID:             {business.id}")
        print(f"  API key:        {business.api_key}")
        print(f"  Webhook secret: {business.webhook_secret}")
        print(f"  Integrations:   {', '.join(created) or 'none'}")
        print("\n  (Save the API key and webhook secret somewhere safe!)\n")


if __name__ == '__main__':
    name = os.environ.get('BUSINESS_NAME') or (sys.argv[1] if len(sys.argv) > 1 else '')
    if not name:
        name = input("Business name: ").strip()
    if not name:
        print("Error: business name required")
        sys.exit(1)
    create_business(name)
