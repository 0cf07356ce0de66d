"""
Pytest configuration and fixtures for Xibo Portal tests.

This module provides shared fixtures for testing:
- Flask application with test configuration
- Test client and JWT auth headers
- An in-memory fake of the layout gateway
- Helper functions for building layout documents and raw Xibo records
"""

import json
import threading
from typing import Any, Dict, List, Optional

import pytest
from flask_jwt_extended import create_access_token

from xibo_portal.app import create_app
from xibo_portal.engine.errors import LayoutNotFound
from xibo_portal.engine.models import (
    CollectionPage,
    LayoutDocument,
    OptionPair,
    PublishState,
    Rect,
    Region,
    Widget,
)


TEST_USER_ID = 7
TEST_USERNAME = 'signage_admin'
TEST_XIBO_TOKEN = 'xibo-user-token'


# =============================================================================
# Flask Fixtures
# =============================================================================


@pytest.fixture(scope='function')
def app():
    """
    Create a Flask application configured for testing.

    Yields:
        Flask application instance
    """
    application = create_app(config_name='testing')
    application.config['TESTING'] = True

    with application.app_context():
        yield application

    application.extensions['resolver_executor'].shutdown(wait=True)


@pytest.fixture(scope='function')
def client(app):
    """
    Create a test client for the Flask application.

    Args:
        app: Flask application fixture

    Returns:
        Flask test client
    """
    return app.test_client()


@pytest.fixture(scope='function')
def auth_token(app):
    """JWT carrying a complete Xibo user context."""
    return create_access_token(
        identity=str(TEST_USER_ID),
        additional_claims={'xibo_token': TEST_XIBO_TOKEN, 'username': TEST_USERNAME},
    )


@pytest.fixture(scope='function')
def auth_headers(auth_token):
    return get_auth_headers(auth_token)


def get_auth_headers(token):
    """
    Helper function to create authorization headers for JWT authentication.

    Args:
        token: JWT access token

    Returns:
        Dictionary with Authorization header
    """
    return {'Authorization': f'Bearer {token}'}


# =============================================================================
# Fake Gateway
# =============================================================================


class FakeGateway:
    """
    In-memory stand-in for XiboLayoutGateway.

    Layouts are served from a dict. Collections are lists, callables taking
    the query, or exceptions to raise. Every call is recorded.
    """

    def __init__(self, layouts: Optional[List[LayoutDocument]] = None):
        self.layouts: Dict[int, LayoutDocument] = {layout.id: layout for layout in layouts or []}
        self.collections: Dict[str, Any] = {}
        self.drafts: Dict[int, int] = {}
        self.checkout_error: Optional[Exception] = None
        self.publish_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.fetch_error: Dict[int, Exception] = {}
        self.fetch_delay: Optional[threading.Event] = None

        self.fetch_layout_calls: List[int] = []
        self.collection_calls: List[tuple] = []
        self.checkout_calls: List[int] = []
        self.publish_calls: List[int] = []
        self.submitted: List[tuple] = []

    def add_layout(self, layout: LayoutDocument) -> None:
        self.layouts[layout.id] = layout

    def fetch_layout(self, layout_id: int) -> LayoutDocument:
        self.fetch_layout_calls.append(layout_id)
        if layout_id in self.fetch_error:
            raise self.fetch_error[layout_id]
        if layout_id not in self.layouts:
            raise LayoutNotFound(layout_id)
        return self.layouts[layout_id]

    def fetch_collection(self, kind: str, query: Optional[Dict[str, Any]] = None) -> CollectionPage:
        self.collection_calls.append((kind, dict(query or {})))
        if self.fetch_delay is not None:
            self.fetch_delay.wait(timeout=5)

        source = self.collections.get(kind, [])
        if isinstance(source, Exception):
            raise source
        items = source(query or {}) if callable(source) else source
        return CollectionPage(items=list(items), total=len(items))

    def checkout(self, layout_id: int) -> int:
        self.checkout_calls.append(layout_id)
        if self.checkout_error is not None:
            raise self.checkout_error
        return self.drafts[layout_id]

    def publish(self, layout_id: int) -> None:
        self.publish_calls.append(layout_id)
        if self.publish_error is not None:
            raise self.publish_error

    def submit_widget_update(self, widget_id: int, payload: Dict[str, Any]) -> None:
        self.submitted.append((widget_id, payload))
        if self.submit_error is not None:
            raise self.submit_error

    def collection_count(self, kind: str) -> int:
        return sum(1 for call_kind, _ in self.collection_calls if call_kind == kind)


@pytest.fixture(scope='function')
def gateway():
    return FakeGateway()


# =============================================================================
# Builders
# =============================================================================


def make_widget(
    widget_id: int,
    kind: str,
    options: Optional[Dict[str, Any]] = None,
    media_ids: Optional[List[int]] = None,
    playlist_id: Optional[int] = None,
) -> Widget:
    """Build a widget; option values that are lists or dicts are JSON encoded."""
    raw_options = []
    for name, value in (options or {}).items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value)
        raw_options.append(OptionPair(option=name, value=value))
    return Widget(
        id=widget_id,
        module_kind=kind,
        raw_options=raw_options,
        attached_media_ids=list(media_ids or []),
        playlist_id=playlist_id,
    )


def make_region(
    region_id: int,
    widgets: Optional[List[Widget]] = None,
    x: float = 0,
    y: float = 0,
    width: float = 100,
    height: float = 100,
) -> Region:
    return Region(id=region_id, geometry=Rect(x, y, width, height), widgets=list(widgets or []))


def make_layout(
    layout_id: int,
    regions: Optional[List[Region]] = None,
    width: float = 1920,
    height: float = 1080,
    state: PublishState = PublishState.PUBLISHED,
    parent_id: Optional[int] = None,
) -> LayoutDocument:
    return LayoutDocument(
        id=layout_id,
        width=width,
        height=height,
        regions=list(regions or []),
        publish_state=state,
        parent_id=parent_id,
    )


def make_layout_record(
    layout_id: int,
    status_id: int = 1,
    parent_id: Optional[int] = None,
    regions: Optional[List[Dict[str, Any]]] = None,
    owner_id: int = TEST_USER_ID,
) -> Dict[str, Any]:
    """Raw Xibo layout record as returned by GET /layout."""
    return {
        'layoutId': layout_id,
        'layout': f'Layout {layout_id}',
        'width': 1920,
        'height': 1080,
        'duration': 60,
        'backgroundImageId': None,
        'publishedStatusId': status_id,
        'publishedStatus': 'Draft' if status_id == 2 else 'Published',
        'parentId': parent_id,
        'ownerId': owner_id,
        'regions': regions or [],
    }
