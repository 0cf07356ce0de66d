"""
Xibo Portal Regions Routes

Blueprint for region preview passthrough:
- GET /preview/<region_id>: Rendered preview of a region's playlist

Query Parameters:
    width, height: Preview size in pixels (required)
    seq: Position in the region's playlist (default 0)

All endpoints are prefixed with /api/regions when registered with the app.
"""

import logging

from flask import Blueprint, Response, request

from xibo_portal.routes.widgets import error_page
from xibo_portal.services import XiboClientError
from xibo_portal.utils.auth import get_gateway, xibo_user_required


logger = logging.getLogger(__name__)

# Create regions blueprint
regions_bp = Blueprint('regions', __name__)


@regions_bp.route('/preview/<int:region_id>', methods=['GET'])
@xibo_user_required
def get_region_preview(region_id):
    """
    Get the rendered preview of a region.

    Returns:
        200: text/html preview
        400: Missing width or height
    """
    width = request.args.get('width', type=int)
    height = request.args.get('height', type=int)
    seq = request.args.get('seq', 0, type=int)

    if not width or not height or width <= 0 or height <= 0:
        return error_page('width and height are required', 400)

    try:
        content = get_gateway().region_preview(region_id, width, height, seq)
    except XiboClientError as e:
        logger.warning(f"Region {region_id} preview unavailable: {e}")
        return error_page('Region preview unavailable', e.status_code or 502)

    return Response(content, mimetype='text/html')
