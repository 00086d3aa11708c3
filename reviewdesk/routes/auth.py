"""
ReviewDesk - API Authentication
Per-business API keys and the internal cron key
"""
from functools import wraps

from flask import request, jsonify, current_app

from reviewdesk.models.db_models import DBBusiness
from reviewdesk.services.webhook_gateway import tokens_match


def business_key_required(f):
    """Decorator to require a valid business API key (X-API-Key)"""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = request.headers.get('X-API-Key')

        # Check query param (for some integrations)
        if not api_key:
            api_key = request.args.get('api_key')

        if not api_key:
            return jsonify({'error': 'API key is missing'}), 401

        current_business = DBBusiness.query.filter_by(api_key=api_key).first()
        if not current_business or not tokens_match(api_key, current_business.api_key):
            return jsonify({'error': 'Invalid API key'}), 401
        if not current_business.is_active:
            return jsonify({'error': 'Business is deactivated'}), 401

        return f(current_business, *args, **kwargs)

    return decorated


def internal_key_required(f):
    """Decorator for cron/internal endpoints (X-Internal-Key)"""
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get('INTERNAL_API_KEY')
        if not expected:
            return jsonify({'error': 'Internal API key not configured'}), 503

        if not tokens_match(request.headers.get('X-Internal-Key'), expected):
            return jsonify({'error': 'Unauthorized'}), 401

        return f(*args, **kwargs)

    return decorated
