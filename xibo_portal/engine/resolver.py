"""
Sub-Resource Resolver

Fetches the media list of referenced sub-playlists and the columns and rows
of referenced datasets, caching results per ``(kind, id)`` for the lifetime
of one layout view.

Concurrency model:
- Each resolve() runs on a thread pool and returns a Future
- Concurrent callers for the same key share one in-flight Future
- ViewState.begin() bumps a generation counter; results that arrive for an
  older generation are discarded instead of committed
- Failures resolve to UnresolvedReference and stay cached until refresh()

Example:
    view = ViewState()
    view.begin(layout.id)
    resolver = SubResourceResolver(gateway, view)
    future = resolver.resolve(PlaylistRef(12))
    result = future.result()
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Tuple

from xibo_portal.engine.errors import EngineError, ResolutionError
from xibo_portal.engine.models import (
    DatasetRef,
    MediaRef,
    PlaylistRef,
    ResolutionResult,
    ResolvedDataset,
    ResolvedPlaylist,
    SubResourceRef,
    UnresolvedReference,
    coerce_int,
)
from xibo_portal.services import ServiceError


logger = logging.getLogger(__name__)


DEFAULT_MAX_WORKERS = 4

CacheKey = Tuple[str, int]


class ViewState:
    """
    Session-scoped state for one layout view.

    Holds the sub-resource cache, the in-flight table and the generation
    token. Passed explicitly to the resolver and scene builder so several
    layout views can coexist.
    """

    def __init__(self, layout_id: Optional[int] = None):
        self.lock = threading.Lock()
        self.layout_id = layout_id
        self.generation = 0
        self.cache: Dict[CacheKey, ResolutionResult] = {}
        # key -> (ticket, future); the ticket identifies the fetch allowed to commit
        self.in_flight: Dict[CacheKey, Tuple[object, Future]] = {}

    def begin(self, layout_id: Optional[int]) -> int:
        """
        Start a new view, discarding cache and in-flight work of the previous one.

        Args:
            layout_id: Layout id now being displayed

        Returns:
            New generation number
        """
        with self.lock:
            self.generation += 1
            self.layout_id = layout_id
            self.cache.clear()
            self.in_flight.clear()
            generation = self.generation

        logger.debug("View generation %d started for layout %s", generation, layout_id)
        return generation

    def is_current(self, generation: int) -> bool:
        with self.lock:
            return self.generation == generation


class SubResourceResolver:
    """
    Resolves playlist and dataset references through the collection fetcher.

    Attributes:
        view: ViewState the cache belongs to
    """

    def __init__(
        self,
        fetcher: Any,
        view: ViewState,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        """
        Initialize the resolver.

        Args:
            fetcher: Object providing fetch_collection(kind, query)
            view: ViewState holding the cache for the current layout
            executor: Shared thread pool (created and owned here if omitted)
            max_workers: Worker count for an owned pool
        """
        self._fetcher = fetcher
        self.view = view
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix='resolver',
        )

    def resolve(self, ref: SubResourceRef) -> 'Future[ResolutionResult]':
        """
        Resolve a reference, sharing cached or in-flight results.

        Args:
            ref: Playlist or dataset reference

        Returns:
            Future yielding ResolvedPlaylist, ResolvedDataset or
            UnresolvedReference. The future never raises.
        """
        key = ref.cache_key

        with self.view.lock:
            cached = self.view.cache.get(key)
            if cached is not None:
                done: Future = Future()
                done.set_result(cached)
                return done

            pending = self.view.in_flight.get(key)
            if pending is not None:
                return pending[1]

            ticket = object()
            future = self._executor.submit(self._load, ref, self.view.generation, ticket)
            self.view.in_flight[key] = (ticket, future)

        logger.debug("Resolving %s %s", ref.kind, key[1])
        return future

    def resolve_all(
        self,
        refs: Iterable[SubResourceRef],
        timeout: Optional[float] = None,
    ) -> Dict[CacheKey, ResolutionResult]:
        """
        Resolve several references and wait for them.

        References still pending after the timeout are reported as
        UnresolvedReference with reason 'timeout'.

        Args:
            refs: References to resolve (duplicates are coalesced)
            timeout: Seconds to wait in total, or None to wait indefinitely

        Returns:
            Mapping of cache key to result
        """
        futures: Dict[CacheKey, Tuple[SubResourceRef, Future]] = {}
        for ref in refs:
            if ref.cache_key not in futures:
                futures[ref.cache_key] = (ref, self.resolve(ref))

        if not futures:
            return {}

        wait([future for _, future in futures.values()], timeout=timeout)

        results: Dict[CacheKey, ResolutionResult] = {}
        for key, (ref, future) in futures.items():
            if future.done():
                results[key] = future.result()
            else:
                logger.warning("Timed out resolving %s %s", ref.kind, key[1])
                results[key] = UnresolvedReference(ref, 'timeout')
        return results

    def peek(self, ref: SubResourceRef) -> Optional[ResolutionResult]:
        """Return the committed cache entry for a reference, if any."""
        with self.view.lock:
            return self.view.cache.get(ref.cache_key)

    def refresh(self) -> int:
        """
        Drop cached failures so the next resolve() retries them.

        Returns:
            Number of entries dropped
        """
        with self.view.lock:
            stale = [
                key for key, result in self.view.cache.items()
                if isinstance(result, UnresolvedReference)
            ]
            for key in stale:
                del self.view.cache[key]

        if stale:
            logger.info("Dropped %d unresolved sub-resources for retry", len(stale))
        return len(stale)

    def invalidate(self, ref: SubResourceRef) -> bool:
        """
        Forget a cached or in-flight reference.

        Returns:
            True if anything was dropped
        """
        key = ref.cache_key
        with self.view.lock:
            dropped = self.view.cache.pop(key, None) is not None
            dropped = self.view.in_flight.pop(key, None) is not None or dropped
        return dropped

    def invalidate_widget(self, widget_id: int, refs: Iterable[SubResourceRef] = ()) -> int:
        """
        Invalidate every sub-resource a widget participates in.

        Covers the widget's own references plus any cached playlist that
        lists the widget among its items.

        Args:
            widget_id: Edited widget id
            refs: References decoded from the widget's options

        Returns:
            Number of entries dropped
        """
        count = sum(1 for ref in refs if self.invalidate(ref))

        with self.view.lock:
            containing = [
                key for key, result in self.view.cache.items()
                if isinstance(result, ResolvedPlaylist) and widget_id in result.widget_ids()
            ]
            for key in containing:
                del self.view.cache[key]

        count += len(containing)
        logger.debug("Invalidated %d sub-resources for widget %s", count, widget_id)
        return count

    def close(self) -> None:
        """Shut down the thread pool if this resolver created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load(self, ref: SubResourceRef, generation: int, ticket: object) -> ResolutionResult:
        key = ref.cache_key

        try:
            result = self._fetch(ref)
        except (ServiceError, EngineError) as e:
            logger.warning("Failed to resolve %s %s: %s", ref.kind, key[1], e)
            result = UnresolvedReference(ref, str(e))
        except Exception as e:
            logger.exception("Unexpected error resolving %s %s", ref.kind, key[1])
            result = UnresolvedReference(ref, f"{type(e).__name__}: {e}")

        with self.view.lock:
            pending = self.view.in_flight.get(key)
            if self.view.generation != generation or pending is None or pending[0] is not ticket:
                logger.debug("Discarding stale result for %s %s", ref.kind, key[1])
                return UnresolvedReference(ref, 'stale')

            self.view.cache[key] = result
            del self.view.in_flight[key]

        return result

    def _fetch(self, ref: SubResourceRef) -> ResolutionResult:
        if isinstance(ref, PlaylistRef):
            return self._fetch_playlist(ref)
        if isinstance(ref, DatasetRef):
            return self._fetch_dataset(ref)
        raise ResolutionError(f"Unsupported reference type: {type(ref).__name__}")

    def _fetch_playlist(self, ref: PlaylistRef) -> ResolvedPlaylist:
        page = self._fetcher.fetch_collection('playlist', {
            'playlistId': ref.playlist_id,
            'embed': 'widgets',
        })

        playlist = None
        for item in page.items:
            if isinstance(item, dict) and coerce_int(item.get('playlistId')) == ref.playlist_id:
                playlist = item
                break

        if playlist is None:
            raise ResolutionError(
                f"Playlist {ref.playlist_id} not found",
                {'playlist_id': ref.playlist_id},
            )

        return ResolvedPlaylist(
            playlist_id=ref.playlist_id,
            items=tuple(_media_refs(playlist.get('widgets') or [])),
        )

    def _fetch_dataset(self, ref: DatasetRef) -> ResolvedDataset:
        query = {'dataSetId': ref.dataset_id}
        columns = self._fetcher.fetch_collection('dataset_column', query)
        rows = self._fetcher.fetch_collection('dataset_data', query)

        return ResolvedDataset(
            dataset_id=ref.dataset_id,
            columns=tuple(columns.items),
            rows=tuple(rows.items),
        )


def _media_refs(widgets: List[Dict[str, Any]]) -> List[MediaRef]:
    """Flatten playlist widgets into the media they reference."""
    refs = []
    for widget in widgets:
        if not isinstance(widget, dict):
            continue
        widget_id = coerce_int(widget.get('widgetId'))
        media_ids = widget.get('mediaIds')
        if media_ids is None and widget.get('mediaId') is not None:
            media_ids = [widget.get('mediaId')]
        if media_ids is not None and not isinstance(media_ids, (list, tuple)):
            media_ids = [media_ids]
        for media_id in media_ids or []:
            media_id = coerce_int(media_id)
            if media_id is None:
                continue
            refs.append(MediaRef(
                media_id=media_id,
                widget_id=widget_id,
                name=widget.get('name') or '',
                module_kind=widget.get('type') or '',
                duration=coerce_int(widget.get('duration')),
            ))
    return refs
