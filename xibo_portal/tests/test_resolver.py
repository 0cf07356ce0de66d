"""
Tests for the sub-resource resolver.

Covers:
- Playlist and dataset resolution through the collection fetcher
- Request coalescing for identical references
- Unresolved markers for failed fetches and explicit refresh
- Discarding results that arrive after the view changed
- Invalidation after edits
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from xibo_portal.engine.models import (
    DatasetRef,
    PlaylistRef,
    RefConfidence,
    ResolvedDataset,
    ResolvedPlaylist,
    UnresolvedReference,
)
from xibo_portal.engine.resolver import SubResourceResolver, ViewState
from xibo_portal.services import XiboClientError


PLAYLIST_RECORD = {
    'playlistId': 12,
    'name': 'Promo',
    'widgets': [
        {'widgetId': 101, 'type': 'image', 'name': 'Banner', 'duration': 10, 'mediaIds': [42, 43]},
        {'widgetId': 102, 'type': 'video', 'mediaIds': ['44']},
        {'widgetId': 103, 'type': 'text', 'mediaIds': []},
    ],
}


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def view():
    state = ViewState()
    state.begin(1)
    return state


@pytest.fixture
def resolver(gateway, view, executor):
    gateway.collections['playlist'] = [PLAYLIST_RECORD]
    gateway.collections['dataset_column'] = [{'dataSetColumnId': 1, 'heading': 'Name'}]
    gateway.collections['dataset_data'] = [{'id': 1, 'Name': 'Alpha'}, {'id': 2, 'Name': 'Beta'}]
    return SubResourceResolver(gateway, view, executor=executor)


# =============================================================================
# Resolution
# =============================================================================

class TestResolve:
    """Tests for resolve() results."""

    def test_playlist_media(self, resolver, gateway):
        """A playlist resolves to the media of its widgets."""
        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert isinstance(result, ResolvedPlaylist)
        assert [item.media_id for item in result.items] == [42, 43, 44]
        assert result.items[0].widget_id == 101
        assert result.items[0].name == 'Banner'
        assert gateway.collection_calls == [('playlist', {'playlistId': 12, 'embed': 'widgets'})]

    def test_dataset_columns_and_rows(self, resolver):
        """A dataset resolves to its columns and rows."""
        result = resolver.resolve(DatasetRef(5)).result(timeout=5)

        assert isinstance(result, ResolvedDataset)
        assert result.columns[0]['heading'] == 'Name'
        assert len(result.rows) == 2

    def test_cached_after_first_resolve(self, resolver, gateway):
        """A resolved reference is served from the cache."""
        resolver.resolve(PlaylistRef(12)).result(timeout=5)
        resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert gateway.collection_count('playlist') == 1
        assert isinstance(resolver.peek(PlaylistRef(12)), ResolvedPlaylist)

    def test_confidence_does_not_split_cache(self, resolver, gateway):
        """High and low confidence references to one id share a key."""
        resolver.resolve(PlaylistRef(12, RefConfidence.HIGH)).result(timeout=5)
        resolver.resolve(PlaylistRef(12, RefConfidence.LOW)).result(timeout=5)

        assert gateway.collection_count('playlist') == 1


class TestCoalescing:
    """Tests for request coalescing."""

    def test_concurrent_references_share_one_fetch(self, resolver, gateway):
        """N simultaneous references to one playlist issue one fetch."""
        gateway.fetch_delay = threading.Event()

        futures = [resolver.resolve(PlaylistRef(12)) for _ in range(5)]
        gateway.fetch_delay.set()
        results = [future.result(timeout=5) for future in futures]

        assert gateway.collection_count('playlist') == 1
        assert all(result is results[0] for result in results)

    def test_resolve_all_dedupes(self, resolver, gateway):
        """resolve_all() returns one entry per key."""
        results = resolver.resolve_all([PlaylistRef(12), PlaylistRef(12), DatasetRef(5)], timeout=5)

        assert set(results) == {('playlist', 12), ('dataset', 5)}
        assert gateway.collection_count('playlist') == 1

    def test_resolve_all_timeout(self, resolver, gateway):
        """References still pending at the timeout are unresolved."""
        gateway.fetch_delay = threading.Event()

        results = resolver.resolve_all([PlaylistRef(12)], timeout=0.05)
        gateway.fetch_delay.set()

        assert isinstance(results[('playlist', 12)], UnresolvedReference)
        assert results[('playlist', 12)].reason == 'timeout'


# =============================================================================
# Failures
# =============================================================================

class TestFailures:
    """Tests for unresolved markers."""

    def test_upstream_error_is_unresolved(self, resolver, gateway):
        """A failed fetch resolves to an UnresolvedReference, not an exception."""
        gateway.collections['playlist'] = XiboClientError('boom', status_code=500)

        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert isinstance(result, UnresolvedReference)
        assert result.ref == PlaylistRef(12)

    def test_missing_playlist_is_unresolved(self, resolver, gateway):
        """A playlist absent from the collection is unresolved, not empty."""
        gateway.collections['playlist'] = []

        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert isinstance(result, UnresolvedReference)

    def test_failure_cached_until_refresh(self, resolver, gateway):
        """Failures are not refetched until refresh() is called."""
        gateway.collections['playlist'] = XiboClientError('boom', status_code=503)
        resolver.resolve(PlaylistRef(12)).result(timeout=5)
        resolver.resolve(PlaylistRef(12)).result(timeout=5)
        assert gateway.collection_count('playlist') == 1

        gateway.collections['playlist'] = [PLAYLIST_RECORD]
        assert resolver.refresh() == 1

        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)
        assert isinstance(result, ResolvedPlaylist)
        assert gateway.collection_count('playlist') == 2

    def test_unexpected_error_is_unresolved(self, resolver, gateway, view):
        """Errors outside the service hierarchy still settle the reference."""
        gateway.collections['playlist'] = ValueError('bad record')

        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert isinstance(result, UnresolvedReference)
        assert 'ValueError' in result.reason
        assert view.in_flight == {}

        gateway.collections['playlist'] = [PLAYLIST_RECORD]
        assert resolver.refresh() == 1
        assert isinstance(resolver.resolve(PlaylistRef(12)).result(timeout=5), ResolvedPlaylist)

    def test_malformed_widget_media(self, resolver, gateway):
        """Scalar mediaIds and non-dict entries do not break resolution."""
        gateway.collections['playlist'] = [
            'not-a-record',
            {
                'playlistId': 12,
                'widgets': [
                    {'widgetId': 1, 'type': 'image', 'mediaIds': 42},
                    None,
                    {'widgetId': 2, 'type': 'video', 'mediaId': '43'},
                ],
            },
        ]

        result = resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert isinstance(result, ResolvedPlaylist)
        assert [item.media_id for item in result.items] == [42, 43]
        assert [item.widget_id for item in result.items] == [1, 2]


# =============================================================================
# View Generations
# =============================================================================

class TestViewGenerations:
    """Tests for cancellation through the generation counter."""

    def test_stale_result_discarded(self, resolver, gateway, view):
        """A result arriving after begin() is not committed."""
        gateway.fetch_delay = threading.Event()
        future = resolver.resolve(PlaylistRef(12))

        view.begin(2)
        gateway.fetch_delay.set()
        result = future.result(timeout=5)

        assert isinstance(result, UnresolvedReference)
        assert result.reason == 'stale'
        assert resolver.peek(PlaylistRef(12)) is None

    def test_begin_clears_cache(self, resolver, view):
        """Starting a new view drops the previous cache."""
        resolver.resolve(PlaylistRef(12)).result(timeout=5)

        generation = view.begin(3)

        assert resolver.peek(PlaylistRef(12)) is None
        assert view.layout_id == 3
        assert view.is_current(generation)

    def test_views_do_not_share_cache(self, gateway, executor):
        """Two views resolve independently."""
        gateway.collections['playlist'] = [PLAYLIST_RECORD]
        first = SubResourceResolver(gateway, ViewState(1), executor=executor)
        second = SubResourceResolver(gateway, ViewState(2), executor=executor)

        first.resolve(PlaylistRef(12)).result(timeout=5)
        second.resolve(PlaylistRef(12)).result(timeout=5)

        assert gateway.collection_count('playlist') == 2


# =============================================================================
# Invalidation
# =============================================================================

class TestInvalidation:
    """Tests for cache invalidation after edits."""

    def test_invalidate_ref(self, resolver, gateway):
        """An invalidated reference is refetched."""
        resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert resolver.invalidate(PlaylistRef(12)) is True
        resolver.resolve(PlaylistRef(12)).result(timeout=5)

        assert gateway.collection_count('playlist') == 2

    def test_invalidate_widget_drops_containing_playlists(self, resolver):
        """Playlists listing the edited widget are dropped."""
        resolver.resolve(PlaylistRef(12)).result(timeout=5)
        resolver.resolve(DatasetRef(5)).result(timeout=5)

        dropped = resolver.invalidate_widget(101)

        assert dropped == 1
        assert resolver.peek(PlaylistRef(12)) is None
        assert resolver.peek(DatasetRef(5)) is not None

    def test_invalidate_widget_refs(self, resolver):
        """The widget's own references are dropped."""
        resolver.resolve(DatasetRef(5)).result(timeout=5)

        assert resolver.invalidate_widget(999, [DatasetRef(5)]) == 1
        assert resolver.peek(DatasetRef(5)) is None
