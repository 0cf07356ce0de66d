"""
Tests for the HTTP routes.

Covers:
- Authentication requirements
- Layout scene, edit, checkout and publish endpoints
- Widget text and media edit endpoints
- Widget, region, media library and thumbnail passthroughs
- Health check
"""

from unittest.mock import MagicMock, patch

import pytest
from flask_jwt_extended import create_access_token

from xibo_portal.engine.models import CollectionPage, PublishState
from xibo_portal.services import XiboClientError
from xibo_portal.tests.conftest import get_auth_headers, make_layout, make_region, make_widget


@pytest.fixture
def layouts(gateway):
    regions = [
        make_region(1, [make_widget(11, 'text', {'text': 'Old'})], width=960, height=540),
        make_region(2, [make_widget(12, 'image', media_ids=[42])], x=960, width=960, height=540),
        make_region(3, [make_widget(13, 'canvas', {'elements': []})], y=540, width=1920, height=540),
    ]
    gateway.add_layout(make_layout(761, regions))
    gateway.add_layout(make_layout(900, regions, state=PublishState.DRAFT, parent_id=761))
    gateway.drafts[761] = 900
    return gateway


@pytest.fixture
def patched_gateway(layouts):
    with patch('xibo_portal.routes.layouts.get_gateway', return_value=layouts):
        yield layouts


# =============================================================================
# Authentication
# =============================================================================

class TestAuthentication:
    """Tests for token requirements."""

    def test_missing_token(self, client):
        response = client.get('/api/layouts/761')

        assert response.status_code == 401
        assert response.get_json()['error'] == 'Unauthorized'

    def test_token_without_xibo_token(self, app, client):
        token = create_access_token(identity='7')

        response = client.get('/api/layouts/761', headers=get_auth_headers(token))

        assert response.status_code == 401
        assert 'token' in response.get_json()['message'].lower()

    def test_health(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'


# =============================================================================
# Layouts
# =============================================================================

class TestLayoutRoutes:
    """Tests for layout viewing and lifecycle endpoints."""

    def test_get_layout_scene(self, client, auth_headers, patched_gateway):
        response = client.get('/api/layouts/761?width=1280&height=720', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['layout']['id'] == 761
        assert data['session']['state'] == 'viewing_published'
        assert len(data['scene']) == 3
        assert data['scene'][1]['content']['media_id'] == 42
        assert data['preview']['viewport'] == {'width': 1280, 'height': 720}
        assert patched_gateway.checkout_calls == []

    def test_get_layout_not_found(self, client, auth_headers, patched_gateway):
        response = client.get('/api/layouts/5', headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()['code'] == 'layout_not_found'

    def test_invalid_viewport(self, client, auth_headers, patched_gateway):
        response = client.get('/api/layouts/761?width=wide', headers=auth_headers)

        assert response.status_code == 400

    def test_list_layouts(self, client, auth_headers):
        gateway = MagicMock()
        gateway.list_layouts.return_value = CollectionPage(items=[{'layoutId': 761}], total=1)

        with patch('xibo_portal.routes.layouts.get_gateway', return_value=gateway):
            response = client.get('/api/layouts', headers=auth_headers)

        assert response.get_json() == {'data': [{'layoutId': 761}], 'total': 1}

    def test_open_for_edit_redirects(self, client, auth_headers, patched_gateway):
        response = client.post('/api/layouts/761/edit', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['redirect'] == '/api/layouts/900'
        assert data['session']['state'] == 'viewing_draft'
        assert data['session']['draft_of'] == 761

    def test_open_draft_for_edit(self, client, auth_headers, patched_gateway):
        response = client.post('/api/layouts/900/edit', headers=auth_headers)

        assert response.get_json()['redirect'] is None
        assert patched_gateway.checkout_calls == []

    def test_checkout(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/checkout/761', headers=auth_headers)

        data = response.get_json()
        assert data['status'] == 'success'
        assert data['draft_id'] == 900

    def test_checkout_failed(self, client, auth_headers, patched_gateway):
        patched_gateway.checkout_error = XiboClientError('Server error', status_code=500)

        response = client.put('/api/layouts/checkout/761', headers=auth_headers)

        assert response.status_code == 409
        assert response.get_json()['code'] == 'checkout_failed'

    def test_publish(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/publish/900', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['layout_id'] == 761
        assert patched_gateway.publish_calls == [900]

    def test_publish_published_layout(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/publish/761', headers=auth_headers)

        assert response.status_code == 409
        assert response.get_json()['code'] == 'invalid_transition'


# =============================================================================
# Widget Edits
# =============================================================================

class TestEditRoutes:
    """Tests for text and media edit endpoints."""

    def test_text_edit(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/900/widgets/11/text', json={'value': 'New'}, headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['status'] == 'success'
        assert patched_gateway.submitted == [(11, {'text': 'New'})]

    def test_text_edit_requires_draft(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/761/widgets/11/text', json={'value': 'New'}, headers=auth_headers)

        assert response.status_code == 409
        assert response.get_json()['code'] == 'not_a_draft'
        assert patched_gateway.submitted == []

    def test_text_edit_canvas_unsupported(self, client, auth_headers, patched_gateway):
        response = client.put(
            '/api/layouts/900/widgets/13/text',
            json={'value': 'New'},
            headers=auth_headers,
        )

        assert response.status_code == 422
        data = response.get_json()
        assert data['code'] == 'unsupported_edit_target'
        assert data['details']['reason'] == 'canvas_element'
        assert patched_gateway.submitted == []

    def test_text_edit_numeric_element_id(self, client, auth_headers, patched_gateway):
        """A numeric elementId is accepted and reported back as a string."""
        response = client.put(
            '/api/layouts/900/widgets/13/text',
            json={'value': 'New', 'elementId': 5},
            headers=auth_headers,
        )

        assert response.status_code == 422
        details = response.get_json()['details']
        assert details['reason'] == 'canvas_element'
        assert details['element_id'] == '5'
        assert patched_gateway.submitted == []

    def test_text_edit_element_id_on_plain_widget(self, client, auth_headers, patched_gateway):
        response = client.put(
            '/api/layouts/900/widgets/11/text',
            json={'value': 'New', 'elementId': 5},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.get_json()['code'] == 'edit_target_not_found'

    def test_text_edit_invalid_element_id(self, client, auth_headers, patched_gateway):
        response = client.put(
            '/api/layouts/900/widgets/13/text',
            json={'value': 'New', 'elementId': ['a']},
            headers=auth_headers,
        )

        assert response.status_code == 400

    def test_text_edit_missing_value(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/900/widgets/11/text', json={}, headers=auth_headers)

        assert response.status_code == 400

    def test_text_edit_unknown_widget(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/900/widgets/99/text', json={'value': 'x'}, headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()['code'] == 'edit_target_not_found'

    def test_text_edit_rejected(self, client, auth_headers, patched_gateway):
        patched_gateway.submit_error = XiboClientError('Invalid', status_code=422)

        response = client.put('/api/layouts/900/widgets/11/text', json={'value': 'x'}, headers=auth_headers)

        assert response.status_code == 422
        assert response.get_json()['code'] == 'mutation_error'

    def test_media_swap(self, client, auth_headers, patched_gateway):
        response = client.put('/api/layouts/900/widgets/12/media', json={'mediaId': 77}, headers=auth_headers)

        assert response.status_code == 200
        assert patched_gateway.submitted == [(12, {'mediaIds': [77]})]

    @pytest.mark.parametrize('body', [{}, {'mediaId': 'abc'}, {'mediaId': True}])
    def test_media_swap_invalid_id(self, client, auth_headers, patched_gateway, body):
        response = client.put('/api/layouts/900/widgets/12/media', json=body, headers=auth_headers)

        assert response.status_code == 400


# =============================================================================
# Passthroughs
# =============================================================================

class TestPassthroughRoutes:
    """Tests for widget HTML, region preview and thumbnail endpoints."""

    def test_widget_resource(self, client, auth_headers):
        gateway = MagicMock()
        gateway.widget_resource.return_value = '<div>ticker</div>'

        with patch('xibo_portal.routes.widgets.get_gateway', return_value=gateway):
            response = client.get('/api/widgets/resource/3/55', headers=auth_headers)

        assert response.status_code == 200
        assert response.mimetype == 'text/html'
        assert response.get_data(as_text=True) == '<div>ticker</div>'
        gateway.widget_resource.assert_called_once_with(3, 55)

    def test_widget_resource_error_page(self, client, auth_headers):
        gateway = MagicMock()
        gateway.widget_resource.side_effect = XiboClientError('Not found', status_code=404)

        with patch('xibo_portal.routes.widgets.get_gateway', return_value=gateway):
            response = client.get('/api/widgets/resource/3/55', headers=auth_headers)

        assert response.status_code == 404
        assert 'Widget preview unavailable' in response.get_data(as_text=True)

    def test_region_preview(self, client, auth_headers):
        gateway = MagicMock()
        gateway.region_preview.return_value = '<div>region</div>'

        with patch('xibo_portal.routes.regions.get_gateway', return_value=gateway):
            response = client.get('/api/regions/preview/3?width=640&height=360&seq=2', headers=auth_headers)

        assert response.status_code == 200
        gateway.region_preview.assert_called_once_with(3, 640, 360, 2)

    def test_media_library(self, client, auth_headers):
        gateway = MagicMock()
        gateway.list_media.return_value = CollectionPage(items=[{'mediaId': 42, 'name': 'logo.png'}], total=1)

        with patch('xibo_portal.routes.media.get_gateway', return_value=gateway):
            response = client.get('/api/media?type=image&name=logo', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json() == {'data': [{'mediaId': 42, 'name': 'logo.png'}], 'total': 1}
        gateway.list_media.assert_called_once_with(media_type='image', name='logo')

    def test_media_library_requires_token(self, client):
        response = client.get('/api/media')

        assert response.status_code == 401

    def test_region_preview_requires_size(self, client, auth_headers):
        with patch('xibo_portal.routes.regions.get_gateway') as mock_get_gateway:
            response = client.get('/api/regions/preview/3', headers=auth_headers)

        assert response.status_code == 400
        mock_get_gateway.assert_not_called()

    def test_thumbnail(self, client, auth_headers):
        gateway = MagicMock()
        gateway.layout_thumbnail.return_value = (b'\x89PNG', 'image/png')

        with patch('xibo_portal.routes.layouts.get_gateway', return_value=gateway):
            response = client.get('/api/layouts/thumbnail/761', headers=auth_headers)

        assert response.status_code == 200
        assert response.data == b'\x89PNG'
        assert response.headers['Cache-Control'] == 'private, max-age=60'
