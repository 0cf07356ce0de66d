"""
Xibo Portal Widgets Routes

Blueprint for widget HTML passthrough:
- GET /resource/<region_id>/<widget_id>: Rendered widget HTML

Widgets rendered with the iframe proxy strategy point their iframe at this
endpoint. Failures are returned as a small HTML page so the iframe shows a
readable message instead of a JSON body.

All endpoints are prefixed with /api/widgets when registered with the app.
"""

import html
import logging

from flask import Blueprint, Response

from xibo_portal.services import XiboClientError
from xibo_portal.utils.auth import get_gateway, xibo_user_required


logger = logging.getLogger(__name__)

# Create widgets blueprint
widgets_bp = Blueprint('widgets', __name__)


ERROR_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
body {{ margin: 0; display: flex; align-items: center; justify-content: center;
       height: 100vh; font-family: sans-serif; background: #f4f4f5; color: #52525b; }}
.message {{ text-align: center; padding: 1rem; font-size: 0.875rem; }}
</style>
</head>
<body><div class="message">{message}</div></body>
</html>
"""


def error_page(message: str, status_code: int) -> Response:
    """Render a minimal HTML error page for iframe content."""
    return Response(
        ERROR_PAGE.format(message=html.escape(message)),
        status=status_code,
        mimetype='text/html',
    )


@widgets_bp.route('/resource/<int:region_id>/<int:widget_id>', methods=['GET'])
@xibo_user_required
def get_widget_resource(region_id, widget_id):
    """
    Get the rendered HTML of a widget.

    Returns:
        200: text/html widget content
        4xx/5xx: text/html error page
    """
    try:
        content = get_gateway().widget_resource(region_id, widget_id)
    except XiboClientError as e:
        logger.warning(f"Widget {widget_id} resource unavailable: {e}")
        return error_page('Widget preview unavailable', e.status_code or 502)

    return Response(content, mimetype='text/html')
