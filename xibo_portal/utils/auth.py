"""
Xibo Portal Authentication Utilities.

Tokens are issued elsewhere; this portal only validates them and relays
the caller's Xibo token upstream.

Expected JWT claims:
- sub (identity): Xibo user id
- xibo_token: the user's Xibo access token
- username: Xibo username (used for owner matching)

Usage:
    from xibo_portal.utils.auth import xibo_user_required, get_gateway

    @blueprint.route('/protected')
    @xibo_user_required
    def protected_route():
        gateway = get_gateway()
        return jsonify(gateway.list_layouts().items)
"""

from functools import wraps

from flask import current_app, g, jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from xibo_portal.services import UserContextError
from xibo_portal.services.collection_service import CollectionService, UserContext
from xibo_portal.services.layout_gateway import XiboLayoutGateway


def _load_user_context() -> UserContext:
    claims = get_jwt()
    user_id = claims.get('user_id', get_jwt_identity())
    return UserContext(
        token=claims.get('xibo_token'),
        user_id=user_id,
        username=claims.get('username') or claims.get('userName'),
    )


def xibo_user_required(fn):
    """
    Decorator requiring a valid JWT carrying a Xibo user context.

    Stores the UserContext on Flask's g object for get_user_context().
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        try:
            g.user_context = _load_user_context()
        except UserContextError as e:
            return jsonify({
                'status': 'error',
                'error': 'Unauthorized',
                'message': e.message,
            }), 401
        return fn(*args, **kwargs)

    return wrapper


def get_user_context() -> UserContext:
    """
    Get the caller's user context.

    Returns:
        UserContext stored by @xibo_user_required
    """
    return g.user_context


def get_gateway() -> XiboLayoutGateway:
    """
    Build a layout gateway for the current caller.

    Uses the application's shared XiboClient and the paging limits from
    config.
    """
    user = get_user_context()
    client = current_app.extensions['xibo_client']
    collections = CollectionService(
        client,
        user,
        page_size=current_app.config['COLLECTION_PAGE_SIZE'],
        max_pages=current_app.config['COLLECTION_MAX_PAGES'],
    )
    return XiboLayoutGateway(client, user, collections)
