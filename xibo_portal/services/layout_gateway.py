"""
Layout Gateway - the layout engine's view of the Xibo CMS.

Implements the operations the engine consumes:
- fetch_layout(id) -> LayoutDocument
- fetch_collection(kind, query) -> CollectionPage
- checkout(id) -> draft id
- publish(id)
- submit_widget_update(widget_id, payload)

plus the resources used by the HTTP surface (widget HTML, region
previews, layout thumbnails and the media library). All calls use the
caller's Xibo token.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from xibo_portal.engine.errors import CheckoutConflict, LayoutNotFound
from xibo_portal.engine.models import (
    CollectionPage,
    LayoutDocument,
    OptionPair,
    Rect,
    Region,
    Widget,
    coerce_float,
    coerce_int,
    parse_publish_state,
)
from xibo_portal.services import XiboClientError
from xibo_portal.services.collection_service import CollectionService, UserContext, normalize_list_response


logger = logging.getLogger(__name__)


LAYOUT_EMBED_FIELDS = 'regions,playlists,widgets,widget_validity,tags,permissions,actions'

# Status codes Xibo uses when a layout is already checked out
CHECKOUT_CONFLICT_STATUS_CODES = (409, 422)
CHECKOUT_CONFLICT_MARKER = 'checked out'

LAYOUT_ID_KEYS = ['layoutId', 'layout_id', 'id']
PLAYLIST_ID_KEYS = ['playlistId', 'playlist_id', 'id']
MEDIA_ID_KEYS = ['mediaId', 'media_id', 'id']
DATASET_COLUMN_ID_KEYS = ['dataSetColumnId', 'id']
DATASET_ROW_ID_KEYS = ['id']


def _first(record: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ''):
            return value
    return None


# =============================================================================
# Layout Document Parsing
# =============================================================================


def parse_widget(record: Dict[str, Any]) -> Widget:
    """Build a Widget from a raw Xibo widget record."""
    options = []
    for raw in record.get('widgetOptions') or []:
        if isinstance(raw, dict) and raw.get('option'):
            options.append(OptionPair(option=raw['option'], value=raw.get('value')))

    media_ids = _first(record, 'mediaIds', 'media_ids')
    if media_ids is None:
        single = _first(record, 'mediaId', 'media_id')
        media_ids = [single] if single is not None else []

    return Widget(
        id=coerce_int(_first(record, 'widgetId', 'widget_id', 'id')),
        module_kind=record.get('type') or '',
        raw_options=options,
        attached_media_ids=[mid for mid in (coerce_int(value) for value in media_ids) if mid is not None],
        playlist_id=coerce_int(record.get('playlistId')),
        name=record.get('name') or '',
        duration=coerce_int(record.get('duration')),
    )


def _region_widgets(region: Dict[str, Any], layout: Dict[str, Any]) -> List[Dict[str, Any]]:
    region_id = _first(region, 'regionId', 'region_id')
    playlist = region.get('regionPlaylist') or region.get('playlist')

    if not playlist:
        for candidate in layout.get('playlists') or []:
            if str(_first(candidate, 'regionId', 'region_id')) == str(region_id):
                playlist = candidate
                break

    if region.get('widgets'):
        return region['widgets']
    if isinstance(playlist, dict):
        return playlist.get('widgets') or playlist.get('regionWidgets') or []
    return []


def parse_layout(record: Dict[str, Any]) -> LayoutDocument:
    """
    Build a LayoutDocument from a raw Xibo layout record.

    Regions take their widgets from the region itself, its region playlist,
    or the layout-level playlist bound to the region, in that order.

    Args:
        record: Layout record fetched with regions, playlists and widgets embedded

    Returns:
        LayoutDocument
    """
    regions = []
    for raw_region in record.get('regions') or []:
        regions.append(Region(
            id=coerce_int(_first(raw_region, 'regionId', 'region_id', 'id')),
            geometry=Rect(
                x=coerce_float(raw_region.get('left')),
                y=coerce_float(raw_region.get('top')),
                width=coerce_float(raw_region.get('width')),
                height=coerce_float(raw_region.get('height')),
            ),
            widgets=[parse_widget(widget) for widget in _region_widgets(raw_region, record)],
            name=raw_region.get('name') or '',
            z_index=coerce_int(raw_region.get('zIndex')) or 0,
        ))

    return LayoutDocument(
        id=coerce_int(_first(record, 'layoutId', 'layout_id', 'id')),
        width=coerce_float(record.get('width')),
        height=coerce_float(record.get('height')),
        regions=regions,
        publish_state=parse_publish_state(record),
        parent_id=coerce_int(record.get('parentId')),
        background_ref=coerce_int(record.get('backgroundImageId')),
        duration_seconds=coerce_int(record.get('duration')) or 0,
        name=record.get('layout') or record.get('name') or '',
    )


# =============================================================================
# Gateway
# =============================================================================


class XiboLayoutGateway:
    """
    Layout operations against the Xibo CMS on behalf of one user.

    Attributes:
        user: Caller identity and token
    """

    def __init__(self, client: Any, user: UserContext, collections: Optional[CollectionService] = None):
        """
        Initialize the gateway.

        Args:
            client: XiboClient
            user: Caller identity
            collections: Collection fetcher (created from client and user if omitted)
        """
        self._client = client
        self.user = user
        self.collections = collections or CollectionService(client, user)

    def fetch_layout(self, layout_id: int) -> LayoutDocument:
        """
        Fetch a layout with its regions, playlists and widgets.

        Raises:
            LayoutNotFound: If the CMS has no such layout for this user
            XiboClientError: For upstream failures
        """
        response = self._client.get(
            '/layout',
            params={'layoutId': layout_id, 'embed': LAYOUT_EMBED_FIELDS},
            token=self.user.token,
        )

        for record in normalize_list_response(response).items:
            if coerce_int(_first(record, 'layoutId', 'layout_id', 'id')) == layout_id:
                return parse_layout(record)

        logger.info(f"Layout {layout_id} not found")
        raise LayoutNotFound(layout_id)

    def fetch_collection(self, kind: str, query: Optional[Dict[str, Any]] = None) -> CollectionPage:
        """
        Fetch a complete collection of the given kind.

        Kinds:
            layout, playlist: owner-scoped
            media: shared library
            dataset_column, dataset_data: rows of a dataset (query needs dataSetId)

        Raises:
            ValueError: For an unknown kind or a dataset query without dataSetId
            XiboClientError: For upstream failures
        """
        query = dict(query or {})

        if kind == 'layout':
            return self.collections.fetch_user_scoped('/layout', LAYOUT_ID_KEYS, query)
        if kind == 'playlist':
            return self.collections.fetch_user_scoped('/playlist', PLAYLIST_ID_KEYS, query)
        if kind == 'media':
            return self.collections.fetch_library('/library', MEDIA_ID_KEYS, query)

        if kind in ('dataset_column', 'dataset_data'):
            dataset_id = coerce_int(query.pop('dataSetId', None))
            if dataset_id is None:
                raise ValueError(f"{kind} query requires dataSetId")
            if kind == 'dataset_column':
                return self.collections.fetch_library(
                    f'/dataset/{dataset_id}/column', DATASET_COLUMN_ID_KEYS, query,
                )
            return self.collections.fetch_library(f'/dataset/data/{dataset_id}', DATASET_ROW_ID_KEYS, query)

        raise ValueError(f"Unknown collection kind: {kind}")

    def list_layouts(self) -> CollectionPage:
        """Layouts owned by the caller, most recently modified first."""
        return self.fetch_collection('layout', {'embed': LAYOUT_EMBED_FIELDS})

    def list_media(self, media_type: Optional[str] = None, name: Optional[str] = None) -> CollectionPage:
        """
        Media in the shared library, used to pick the target of a media swap.

        Args:
            media_type: Library type filter such as image or video
            name: Substring filter on the media name
        """
        query: Dict[str, Any] = {}
        if media_type:
            query['type'] = media_type
        if name:
            query['media'] = name
        return self.fetch_collection('media', query)

    def checkout(self, layout_id: int) -> int:
        """
        Check out a published layout, creating an editable draft.

        Returns:
            Draft layout id

        Raises:
            CheckoutConflict: If the layout is already checked out
            XiboClientError: For other upstream failures
        """
        try:
            response = self._client.put(f'/layout/checkout/{layout_id}', token=self.user.token)
        except XiboClientError as e:
            if _is_checkout_conflict(e):
                raise CheckoutConflict(layout_id) from e
            raise

        record = response.get('data') if isinstance(response, dict) and isinstance(response.get('data'), dict) else response
        draft_id = coerce_int(_first(record or {}, 'layoutId', 'layout_id', 'id'))
        if draft_id is None:
            raise XiboClientError(
                message=f"Checkout of layout {layout_id} returned no draft id",
                response_body=str(response),
            )

        logger.info(f"Checked out layout {layout_id} as draft {draft_id}")
        return draft_id

    def publish(self, layout_id: int) -> None:
        """Publish a draft layout immediately."""
        self._client.put(f'/layout/publish/{layout_id}', data={'publishNow': 1}, token=self.user.token)

    def submit_widget_update(self, widget_id: int, payload: Dict[str, Any]) -> None:
        """Replace a widget's options with the given payload."""
        self._client.put(f'/playlist/widget/{widget_id}', data=payload, token=self.user.token)

    def widget_resource(self, region_id: int, widget_id: int) -> str:
        """Rendered widget HTML for the iframe proxy."""
        return self._client.get_text(
            f'/playlist/widget/resource/{region_id}/{widget_id}',
            params={'preview': 1, 'isEditor': 1},
            token=self.user.token,
        )

    def region_preview(self, region_id: int, width: int, height: int, seq: int = 0) -> str:
        """Rendered preview of a region's playlist at the given sequence position."""
        return self._client.get_text(
            f'/region/preview/{region_id}',
            params={'width': width, 'height': height, 'seq': seq},
            token=self.user.token,
        )

    def layout_thumbnail(self, layout_id: int) -> Tuple[bytes, str]:
        """Thumbnail image bytes and content type."""
        return self._client.get_binary(f'/layout/thumbnail/{layout_id}', token=self.user.token)


def _is_checkout_conflict(error: XiboClientError) -> bool:
    if error.status_code == 409:
        return True
    body = (error.response_body or '').lower()
    return error.status_code in CHECKOUT_CONFLICT_STATUS_CODES and CHECKOUT_CONFLICT_MARKER in body
