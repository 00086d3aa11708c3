"""
ReviewDesk - Integration Routes
Integration health for the business owner
"""
from flask import Blueprint, jsonify

from reviewdesk.models.db_models import DBIntegration
from reviewdesk.routes.auth import business_key_required

integrations_bp = Blueprint('integrations', __name__)


@integrations_bp.route('', methods=['GET'])
@business_key_required
def list_integrations(current_business):
    """
    Connection status, last sync and last error per platform

    GET /api/integrations
    """
    integrations = current_business.integrations.order_by(DBIntegration.platform).all()

    return jsonify({
        'integrations': [i.to_dict() for i in integrations],
        'needs_attention': [i.platform for i in integrations if i.status != 'connected']
    })
