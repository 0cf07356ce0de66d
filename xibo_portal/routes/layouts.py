"""
Xibo Portal Layouts Routes

Blueprint for layout viewing and editing API endpoints:
- GET /: List layouts owned by the caller
- GET /<layout_id>: Get layout, edit session state and scaled scene
- POST /<layout_id>/edit: Open for editing (checks out published layouts)
- PUT /checkout/<layout_id>: Check out a published layout
- PUT /publish/<layout_id>: Publish a draft layout
- PUT /<layout_id>/widgets/<widget_id>/text: Replace widget text
- PUT /<layout_id>/widgets/<widget_id>/media: Swap widget media
- GET /thumbnail/<layout_id>: Layout thumbnail image

Scene endpoints accept ``width`` and ``height`` query parameters for the
target viewport.

All endpoints are prefixed with /api/layouts when registered with the app.
"""

from typing import Tuple

from flask import Blueprint, Response, current_app, jsonify, request

from xibo_portal.engine.errors import UnsupportedEditTarget
from xibo_portal.engine.models import LayoutDocument, Viewport
from xibo_portal.engine.mutations import MutationController
from xibo_portal.engine.resolver import SubResourceResolver, ViewState
from xibo_portal.engine.scene import SceneBuilder
from xibo_portal.engine.session import EditSession
from xibo_portal.utils.auth import get_gateway, xibo_user_required


# Create layouts blueprint
layouts_bp = Blueprint('layouts', __name__)


def _viewport() -> Viewport:
    """Viewport from query parameters, falling back to configured defaults.

    Raises:
        ValueError: If width or height is not a positive integer
    """
    width = request.args.get('width', current_app.config['DEFAULT_VIEWPORT_WIDTH'])
    height = request.args.get('height', current_app.config['DEFAULT_VIEWPORT_HEIGHT'])
    viewport = Viewport(width=int(width), height=int(height))
    if viewport.width <= 0 or viewport.height <= 0:
        raise ValueError('width and height must be positive')
    return viewport


class _LayoutView:
    """Engine components for one request's layout view."""

    def __init__(self, gateway):
        config = current_app.config
        self.gateway = gateway
        self.view = ViewState()
        self.resolver = SubResourceResolver(
            gateway,
            self.view,
            executor=current_app.extensions['resolver_executor'],
        )
        self.builder = SceneBuilder.from_config(config, self.resolver)
        self.session = EditSession(
            gateway,
            self.view,
            max_search_attempts=config['CHECKOUT_SEARCH_ATTEMPTS'],
            search_backoff=config['CHECKOUT_SEARCH_BACKOFF'],
        )

    def controller(self) -> MutationController:
        return MutationController(
            self.gateway,
            self.resolver,
            self.builder,
            resolve_timeout=current_app.config['RESOLVER_TIMEOUT'],
        )

    def scene_payload(self, document: LayoutDocument, viewport: Viewport) -> dict:
        nodes = self.builder.build_resolved(
            document,
            viewport,
            timeout=current_app.config['RESOLVER_TIMEOUT'],
        )
        scale, offset_x, offset_y = self.builder.compute_transform(document, viewport)
        return {
            'layout': document.to_dict(),
            'session': self.session.snapshot().to_dict(),
            'scene': [node.to_dict() for node in nodes],
            'preview': {
                'viewport': {'width': viewport.width, 'height': viewport.height},
                'scale': scale,
                'offset_x': offset_x,
                'offset_y': offset_y,
                'fill_ratio': self.builder.fill_ratio,
            },
        }


def _bad_request(message: str) -> Tuple[Response, int]:
    return jsonify({
        'status': 'error',
        'error': 'Bad Request',
        'message': message,
    }), 400


@layouts_bp.route('', methods=['GET'])
@xibo_user_required
def list_layouts():
    """
    List layouts owned by the caller.

    Returns:
        200: {data: [...], total: n}
    """
    page = get_gateway().list_layouts()
    return jsonify({'data': page.items, 'total': page.total})


@layouts_bp.route('/<int:layout_id>', methods=['GET'])
@xibo_user_required
def get_layout(layout_id):
    """
    Get a layout with its edit session state and scaled scene.

    Query Parameters:
        width: Viewport width in pixels
        height: Viewport height in pixels

    Returns:
        200: {layout, session, scene, preview}
        400: Invalid viewport
        404: Layout not found
    """
    try:
        viewport = _viewport()
    except ValueError as e:
        return _bad_request(str(e))

    layout_view = _LayoutView(get_gateway())
    document = layout_view.session.open(layout_id)
    return jsonify(layout_view.scene_payload(document, viewport))


@layouts_bp.route('/<int:layout_id>/edit', methods=['POST'])
@xibo_user_required
def open_for_edit(layout_id):
    """
    Open a layout for editing.

    Published layouts are checked out and the response redirects to the
    draft id. Drafts are returned as-is without a checkout.

    Returns:
        200: {layout, session, scene, preview, redirect}
        409: Checkout failed
    """
    try:
        viewport = _viewport()
    except ValueError as e:
        return _bad_request(str(e))

    layout_view = _LayoutView(get_gateway())
    document = layout_view.session.open(layout_id, for_edit=True)

    payload = layout_view.scene_payload(document, viewport)
    payload['redirect'] = f'/api/layouts/{document.id}' if document.id != layout_id else None
    return jsonify(payload)


@layouts_bp.route('/checkout/<int:layout_id>', methods=['PUT'])
@xibo_user_required
def checkout_layout(layout_id):
    """
    Check out a published layout.

    Returns:
        200: {status, layout_id, draft_id, session}
        409: Checkout failed
    """
    layout_view = _LayoutView(get_gateway())
    draft = layout_view.session.open(layout_id, for_edit=True)

    return jsonify({
        'status': 'success',
        'layout_id': layout_id,
        'draft_id': draft.id,
        'session': layout_view.session.snapshot().to_dict(),
    })


@layouts_bp.route('/publish/<int:layout_id>', methods=['PUT'])
@xibo_user_required
def publish_layout(layout_id):
    """
    Publish a draft layout.

    Returns:
        200: {status, layout_id, session}
        409: Layout is not a draft
    """
    layout_view = _LayoutView(get_gateway())
    layout_view.session.open(layout_id)
    published = layout_view.session.publish()

    return jsonify({
        'status': 'success',
        'layout_id': published.id,
        'session': layout_view.session.snapshot().to_dict(),
    })


def _draft_or_conflict(layout_view: _LayoutView, layout_id: int):
    document = layout_view.session.open(layout_id)
    if not document.is_draft:
        return None, (jsonify({
            'status': 'error',
            'error': 'Conflict',
            'code': 'not_a_draft',
            'message': f'Layout {layout_id} must be checked out before editing',
        }), 409)
    return document, None


def _edit_response(outcome):
    if isinstance(outcome, UnsupportedEditTarget):
        return jsonify({'status': 'error', 'error': 'Unsupported Edit Target', **outcome.to_dict()}), 422
    return jsonify({'status': 'success', **outcome.to_dict()})


@layouts_bp.route('/<int:layout_id>/widgets/<int:widget_id>/text', methods=['PUT'])
@xibo_user_required
def update_widget_text(layout_id, widget_id):
    """
    Replace the text of a widget in a draft layout.

    Request Body:
        {
            "value": "New text" (required),
            "elementId": "canvas element id" (optional)
        }

    Returns:
        200: {status, widget_id, layout, scene}
        400: Missing value or invalid elementId
        404: Widget not found
        409: Layout is not a draft
        422: Widget cannot be edited here
        502: Upstream rejected the update
    """
    data = request.get_json(silent=True) or {}
    value = data.get('value')
    if not isinstance(value, str):
        return _bad_request('value is required and must be a string')

    element_id = data.get('elementId')
    if isinstance(element_id, bool) or not isinstance(element_id, (str, int, type(None))):
        return _bad_request('elementId must be a string')
    if element_id is not None:
        element_id = str(element_id)

    try:
        viewport = _viewport()
    except ValueError as e:
        return _bad_request(str(e))

    layout_view = _LayoutView(get_gateway())
    document, error = _draft_or_conflict(layout_view, layout_id)
    if error:
        return error

    outcome = layout_view.controller().apply_text_edit(document, widget_id, element_id, value, viewport)
    return _edit_response(outcome)


@layouts_bp.route('/<int:layout_id>/widgets/<int:widget_id>/media', methods=['PUT'])
@xibo_user_required
def swap_widget_media(layout_id, widget_id):
    """
    Swap the media attached to a widget in a draft layout.

    Request Body:
        {
            "mediaId": 42 (required)
        }

    Returns:
        200: {status, widget_id, layout, scene}
        400: Missing or invalid mediaId
        404: Widget not found
        409: Layout is not a draft
        422: Widget cannot be edited here
        502: Upstream rejected the update
    """
    data = request.get_json(silent=True) or {}
    media_id = data.get('mediaId')
    if isinstance(media_id, bool) or not isinstance(media_id, int):
        return _bad_request('mediaId is required and must be an integer')

    try:
        viewport = _viewport()
    except ValueError as e:
        return _bad_request(str(e))

    layout_view = _LayoutView(get_gateway())
    document, error = _draft_or_conflict(layout_view, layout_id)
    if error:
        return error

    outcome = layout_view.controller().apply_media_swap(document, widget_id, media_id, viewport)
    return _edit_response(outcome)


@layouts_bp.route('/thumbnail/<int:layout_id>', methods=['GET'])
@xibo_user_required
def get_thumbnail(layout_id):
    """
    Get the thumbnail image of a layout.

    Returns:
        200: Image bytes
    """
    content, content_type = get_gateway().layout_thumbnail(layout_id)
    response = Response(content, mimetype=content_type)
    response.headers['Cache-Control'] = 'private, max-age=60'
    return response
