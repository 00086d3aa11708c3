"""
ReviewDesk - Routes
API endpoint registration
"""
from flask import Flask


def register_routes(app: Flask):
    """Register all API blueprints"""

    from reviewdesk.routes.reviews import reviews_bp
    from reviewdesk.routes.integrations import integrations_bp
    from reviewdesk.routes.notifications import notifications_bp
    from reviewdesk.routes.webhooks import webhooks_bp

    # Register with /api prefix
    app.register_blueprint(reviews_bp, url_prefix='/api/reviews')
    app.register_blueprint(integrations_bp, url_prefix='/api/integrations')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')
