"""
Xibo Portal Media Routes

Blueprint for the shared media library:
- GET /: Library media available as media swap targets

All endpoints are prefixed with /api/media when registered with the app.
"""

from flask import Blueprint, jsonify, request

from xibo_portal.utils.auth import get_gateway, xibo_user_required


# Create media blueprint
media_bp = Blueprint('media', __name__)


@media_bp.route('', methods=['GET'])
@xibo_user_required
def list_media():
    """
    List media in the shared library.

    Query Parameters:
        type: Library type filter (e.g. image, video)
        name: Substring filter on the media name

    Returns:
        200: {data: [...], total: n}
    """
    page = get_gateway().list_media(
        media_type=request.args.get('type'),
        name=request.args.get('name'),
    )
    return jsonify({'data': page.items, 'total': page.total})
