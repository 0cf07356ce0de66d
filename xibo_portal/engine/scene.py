"""
Scene Builder

Walks the region tree of a layout and produces one scene node per region,
scaled and centred inside a target viewport.

Only a region's first widget is previewed. Its module kind selects the
render strategy:
- IFRAME_PROXY for kinds that need externally rendered HTML
- DIRECT_RENDER for everything else, with content synthesised here
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from xibo_portal.engine.models import (
    CanvasContent,
    CanvasElement,
    EmptyContent,
    IframeContent,
    LayoutDocument,
    MediaContent,
    PlaceholderContent,
    Region,
    RenderStrategy,
    SceneContent,
    SceneNode,
    SubResourceContent,
    SubResourceRef,
    TextContent,
    UnresolvedReference,
    Viewport,
    Widget,
)
from xibo_portal.engine.options import DecodedOptions, decode


logger = logging.getLogger(__name__)


DEFAULT_FILL_RATIO = 0.9
DEFAULT_IFRAME_KINDS = frozenset({'dataset', 'embedded', 'ticker'})

MEDIA_KINDS = frozenset({'image', 'video'})
TEXT_KINDS = frozenset({'text'})
CANVAS_KINDS = frozenset({'canvas', 'global'})
PLAYLIST_KINDS = frozenset({'playlist', 'subplaylist'})

WIDGET_RESOURCE_PATH = '/api/widgets/resource/{region_id}/{widget_id}'


def parse_kinds(value: Any) -> frozenset:
    """Parse a comma-separated string or iterable into lower-cased kinds."""
    if isinstance(value, str):
        value = value.split(',')
    return frozenset(str(kind).strip().lower() for kind in value or () if str(kind).strip())


class SceneBuilder:
    """
    Builds scaled scene nodes from layout documents.

    Attributes:
        fill_ratio: Fraction of the viewport the scaled layout may occupy
        iframe_kinds: Module kinds rendered through the widget HTML proxy
    """

    def __init__(
        self,
        fill_ratio: float = DEFAULT_FILL_RATIO,
        iframe_kinds: Optional[Iterable[str]] = None,
        resolver: Any = None,
    ):
        """
        Initialize the scene builder.

        Args:
            fill_ratio: Scale factor applied on top of the fit-to-viewport scale,
                must be between 0 and 1 exclusive
            iframe_kinds: Module kinds that require externally rendered HTML
            resolver: SubResourceResolver for playlist and dataset references

        Raises:
            ValueError: If fill_ratio is outside (0, 1)
        """
        if not 0 < fill_ratio < 1:
            raise ValueError(f"fill_ratio must be between 0 and 1, got {fill_ratio}")

        self.fill_ratio = fill_ratio
        self.iframe_kinds = parse_kinds(iframe_kinds) if iframe_kinds is not None else DEFAULT_IFRAME_KINDS
        self.resolver = resolver

    @classmethod
    def from_config(cls, config: Mapping[str, Any], resolver: Any = None) -> 'SceneBuilder':
        """Create a builder from application config values."""
        return cls(
            fill_ratio=float(config.get('SCENE_FILL_RATIO', DEFAULT_FILL_RATIO)),
            iframe_kinds=config.get('SCENE_IFRAME_KINDS', DEFAULT_IFRAME_KINDS),
            resolver=resolver,
        )

    def compute_transform(self, layout: LayoutDocument, viewport: Viewport) -> Tuple[float, float, float]:
        """
        Compute the scale and centring offset for a layout in a viewport.

        Returns:
            (scale, offset_x, offset_y). Scale is 0 when either the layout or
            the viewport has no area.
        """
        if layout.width <= 0 or layout.height <= 0 or viewport.width <= 0 or viewport.height <= 0:
            logger.warning(
                "Cannot scale layout %s (%sx%s) into viewport %sx%s",
                layout.id, layout.width, layout.height, viewport.width, viewport.height,
            )
            return 0.0, 0.0, 0.0

        scale = min(viewport.width / layout.width, viewport.height / layout.height) * self.fill_ratio
        offset_x = (viewport.width - layout.width * scale) / 2
        offset_y = (viewport.height - layout.height * scale) / 2
        return scale, offset_x, offset_y

    def build(self, layout: LayoutDocument, viewport: Viewport) -> List[SceneNode]:
        """
        Build one scene node per region, in region order.

        Sub-resource resolution is started but not awaited; nodes whose
        reference is still in flight report a loading state.

        Args:
            layout: Layout document to render
            viewport: Target viewport size

        Returns:
            Scene nodes, one for every region including empty ones
        """
        scale, offset_x, offset_y = self.compute_transform(layout, viewport)

        nodes = [
            self._build_node(layout, region, scale, offset_x, offset_y)
            for region in layout.regions
        ]

        logger.debug("Built %d scene nodes for layout %s at scale %.4f", len(nodes), layout.id, scale)
        return nodes

    def build_resolved(
        self,
        layout: LayoutDocument,
        viewport: Viewport,
        timeout: Optional[float] = None,
    ) -> List[SceneNode]:
        """Build after waiting for every referenced sub-resource to resolve."""
        if self.resolver is not None:
            self.resolver.resolve_all(self.collect_refs(layout), timeout=timeout)
        return self.build(layout, viewport)

    def collect_refs(self, layout: LayoutDocument) -> List[SubResourceRef]:
        """References the scene needs for the previewed widget of each region."""
        refs = []
        for region in layout.regions:
            widget = region.primary_widget
            if widget is None:
                continue
            ref = self._content_ref(widget, decode(widget))
            if ref is not None:
                refs.append(ref)
        return refs

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def _content_ref(self, widget: Widget, decoded: DecodedOptions) -> Optional[SubResourceRef]:
        if widget.kind in PLAYLIST_KINDS:
            return decoded.sub_playlist_ref
        if widget.kind == 'dataset':
            return decoded.dataset_ref
        return None

    def _build_node(
        self,
        layout: LayoutDocument,
        region: Region,
        scale: float,
        offset_x: float,
        offset_y: float,
    ) -> SceneNode:
        geometry = region.geometry.clamp_to(layout.width, layout.height).scale(scale, offset_x, offset_y)
        widget = region.primary_widget

        if widget is None:
            return SceneNode(
                region_id=region.id,
                scaled_geometry=geometry,
                render_strategy=RenderStrategy.DIRECT_RENDER,
                primary_widget=None,
                overflow_count=0,
                content=EmptyContent(),
            )

        strategy, content = self._classify(layout, region, widget, scale, offset_x, offset_y)

        return SceneNode(
            region_id=region.id,
            scaled_geometry=geometry,
            render_strategy=strategy,
            primary_widget=widget,
            overflow_count=max(0, len(region.widgets) - 1),
            content=content,
        )

    def _classify(
        self,
        layout: LayoutDocument,
        region: Region,
        widget: Widget,
        scale: float,
        offset_x: float,
        offset_y: float,
    ) -> Tuple[RenderStrategy, SceneContent]:
        decoded = decode(widget)
        kind = widget.kind

        if kind in self.iframe_kinds:
            data = None
            if kind == 'dataset':
                if decoded.dataset_ref is None:
                    return RenderStrategy.DIRECT_RENDER, PlaceholderContent(kind, 'missing_dataset_reference')
                data = self._sub_resource_content(decoded.dataset_ref)
            path = WIDGET_RESOURCE_PATH.format(region_id=region.id, widget_id=widget.id)
            return RenderStrategy.IFRAME_PROXY, IframeContent(resource_path=path, data=data)

        if kind in CANVAS_KINDS or decoded.canvas_elements:
            elements = tuple(
                self._scale_element(element, layout, scale, offset_x, offset_y)
                for element in decoded.canvas_elements
            )
            return RenderStrategy.DIRECT_RENDER, CanvasContent(elements=elements)

        if kind in MEDIA_KINDS:
            if not widget.attached_media_ids:
                return RenderStrategy.DIRECT_RENDER, PlaceholderContent(kind, 'missing_media')
            return RenderStrategy.DIRECT_RENDER, MediaContent(kind, tuple(widget.attached_media_ids))

        if kind in TEXT_KINDS:
            return RenderStrategy.DIRECT_RENDER, TextContent(decoded.scalar_text or '')

        if kind in PLAYLIST_KINDS:
            if decoded.sub_playlist_ref is None:
                return RenderStrategy.DIRECT_RENDER, PlaceholderContent(kind, 'missing_playlist_reference')
            return RenderStrategy.DIRECT_RENDER, self._sub_resource_content(decoded.sub_playlist_ref)

        if kind == 'dataset':
            # Dataset rendered directly when not configured for the iframe proxy
            if decoded.dataset_ref is None:
                return RenderStrategy.DIRECT_RENDER, PlaceholderContent(kind, 'missing_dataset_reference')
            return RenderStrategy.DIRECT_RENDER, self._sub_resource_content(decoded.dataset_ref)

        return RenderStrategy.DIRECT_RENDER, PlaceholderContent(kind or 'unknown', 'unsupported_module')

    def _sub_resource_content(self, ref: SubResourceRef) -> SubResourceContent:
        if self.resolver is None:
            return SubResourceContent(ref, UnresolvedReference(ref, 'no_resolver'))

        future = self.resolver.resolve(ref)
        if future.done():
            return SubResourceContent(ref, future.result())
        return SubResourceContent(ref, None)

    @staticmethod
    def _scale_element(
        element: CanvasElement,
        layout: LayoutDocument,
        scale: float,
        offset_x: float,
        offset_y: float,
    ) -> CanvasElement:
        geometry = element.geometry.clamp_to(layout.width, layout.height).scale(scale, offset_x, offset_y)
        return CanvasElement(
            element_id=element.element_id,
            kind=element.kind,
            geometry=geometry,
            text=element.text,
            media_id=element.media_id,
            font_size=element.font_size * scale if element.font_size is not None else None,
            font_color=element.font_color,
        )
