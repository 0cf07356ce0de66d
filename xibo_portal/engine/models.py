"""
Layout Engine Data Model

Dataclasses for layout documents as fetched from the upstream CMS, the
references widgets make to other collections, and the scene nodes produced
for rendering.

Geometry is expressed in layout-native units until the scene builder
scales it to a viewport.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class PublishState(Enum):
    """Lifecycle state of a layout document in the upstream CMS."""
    PUBLISHED = "published"
    DRAFT = "draft"


class RefConfidence(Enum):
    """How trustworthy a decoded playlist reference is."""
    HIGH = "high"    # From an explicit subPlaylists option
    LOW = "low"      # From the overloaded widget playlistId field


class CanvasElementKind(Enum):
    """Kinds of positioned element a canvas widget can carry."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class RenderStrategy(Enum):
    """How a scene node is rendered by the UI."""
    DIRECT_RENDER = "direct_render"
    IFRAME_PROXY = "iframe_proxy"


# Xibo publishedStatusId values
PUBLISHED_STATUS_ID = 1
DRAFT_STATUS_ID = 2


def coerce_int(value: Any) -> Optional[int]:
    """
    Convert an upstream id-like value to int.

    Args:
        value: int, numeric string or integral float

    Returns:
        Integer value, or None if the value is not a usable integer
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip('-').isdigit():
            return int(stripped)
    return None


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Convert an upstream numeric value to float, falling back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_publish_state(record: Dict[str, Any]) -> PublishState:
    """
    Derive the publish state of a raw upstream layout record.

    Xibo reports the state either as publishedStatusId (1 published,
    2 draft) or as a publishedStatus label.

    Args:
        record: Raw layout dictionary

    Returns:
        PublishState for the record
    """
    status_id = coerce_int(record.get('publishedStatusId'))
    if status_id == DRAFT_STATUS_ID:
        return PublishState.DRAFT
    if status_id == PUBLISHED_STATUS_ID:
        return PublishState.PUBLISHED

    label = str(record.get('publishedStatus') or '').strip().lower()
    if label == 'draft':
        return PublishState.DRAFT
    return PublishState.PUBLISHED


# =============================================================================
# Layout Document
# =============================================================================


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def clamp_to(self, width: float, height: float) -> 'Rect':
        """
        Clamp the rectangle so it lies inside a (0, 0, width, height) canvas.

        Negative sizes collapse to zero and any part extending beyond the
        canvas is cut off.
        """
        width = max(width, 0.0)
        height = max(height, 0.0)
        x = min(max(self.x, 0.0), width)
        y = min(max(self.y, 0.0), height)
        return Rect(
            x=x,
            y=y,
            width=min(max(self.width, 0.0), width - x),
            height=min(max(self.height, 0.0), height - y),
        )

    def scale(self, factor: float, offset_x: float = 0.0, offset_y: float = 0.0) -> 'Rect':
        """Scale by factor and translate by the given offset."""
        return Rect(
            x=self.x * factor + offset_x,
            y=self.y * factor + offset_y,
            width=self.width * factor,
            height=self.height * factor,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
        }


@dataclass(frozen=True)
class Viewport:
    """Target rendering area in pixels."""
    width: float
    height: float


@dataclass(frozen=True)
class OptionPair:
    """One entry of a widget option bag. Value may hold a JSON string."""
    option: str
    value: Any = None


@dataclass
class Widget:
    """A single piece of schedulable content inside a region."""
    id: int
    module_kind: str
    raw_options: List[OptionPair] = field(default_factory=list)
    attached_media_ids: List[int] = field(default_factory=list)
    playlist_id: Optional[int] = None
    name: str = ''
    duration: Optional[int] = None

    @property
    def kind(self) -> str:
        """Lower-cased module kind used for classification."""
        return (self.module_kind or '').strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'module_kind': self.module_kind,
            'name': self.name,
            'duration': self.duration,
            'playlist_id': self.playlist_id,
            'attached_media_ids': list(self.attached_media_ids),
        }


@dataclass
class Region:
    """A positioned area of a layout holding one playlist of widgets."""
    id: int
    geometry: Rect
    widgets: List[Widget] = field(default_factory=list)
    name: str = ''
    z_index: int = 0

    @property
    def primary_widget(self) -> Optional[Widget]:
        """First widget of the region, the only one previewed."""
        return self.widgets[0] if self.widgets else None


@dataclass
class LayoutDocument:
    """Root layout entity as fetched from the upstream CMS."""
    id: int
    width: float
    height: float
    regions: List[Region] = field(default_factory=list)
    publish_state: PublishState = PublishState.PUBLISHED
    parent_id: Optional[int] = None
    background_ref: Optional[int] = None
    duration_seconds: int = 0
    name: str = ''

    @property
    def is_draft(self) -> bool:
        return self.publish_state == PublishState.DRAFT

    def find_widget(self, widget_id: int) -> Optional[Tuple[Region, Widget]]:
        """
        Locate a widget anywhere in the region tree.

        Args:
            widget_id: Upstream widget id

        Returns:
            (region, widget) tuple, or None if the widget is not in this layout
        """
        for region in self.regions:
            for widget in region.widgets:
                if widget.id == widget_id:
                    return region, widget
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'width': self.width,
            'height': self.height,
            'background_ref': self.background_ref,
            'duration_seconds': self.duration_seconds,
            'publish_state': self.publish_state.value,
            'parent_id': self.parent_id,
            'regions': [
                {
                    'id': region.id,
                    'name': region.name,
                    'z_index': region.z_index,
                    'geometry': region.geometry.to_dict(),
                    'widgets': [widget.to_dict() for widget in region.widgets],
                }
                for region in self.regions
            ],
        }


@dataclass(frozen=True)
class CanvasElement:
    """A freely positioned element inside a canvas/global widget."""
    element_id: str
    kind: CanvasElementKind
    geometry: Rect
    text: Optional[str] = None
    media_id: Optional[int] = None
    font_size: Optional[float] = None
    font_color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'element_id': self.element_id,
            'kind': self.kind.value,
            'geometry': self.geometry.to_dict(),
            'text': self.text,
            'media_id': self.media_id,
            'font_size': self.font_size,
            'font_color': self.font_color,
        }


@dataclass(frozen=True)
class CollectionPage:
    """Deduplicated, owner-filtered collection returned by the fetcher."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total: Optional[int] = None


# =============================================================================
# Sub-Resources
# =============================================================================


@dataclass(frozen=True)
class PlaylistRef:
    """Reference from a widget to a sub-playlist."""
    playlist_id: int
    confidence: RefConfidence = RefConfidence.HIGH

    kind = 'playlist'

    @property
    def cache_key(self) -> Tuple[str, int]:
        return (self.kind, self.playlist_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'id': self.playlist_id,
            'confidence': self.confidence.value,
        }


@dataclass(frozen=True)
class DatasetRef:
    """Reference from a widget to a dataset."""
    dataset_id: int

    kind = 'dataset'

    @property
    def cache_key(self) -> Tuple[str, int]:
        return (self.kind, self.dataset_id)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'id': self.dataset_id}


SubResourceRef = Union[PlaylistRef, DatasetRef]


@dataclass(frozen=True)
class MediaRef:
    """Media item found inside a resolved playlist."""
    media_id: int
    widget_id: Optional[int] = None
    name: str = ''
    module_kind: str = ''
    duration: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'media_id': self.media_id,
            'widget_id': self.widget_id,
            'name': self.name,
            'module_kind': self.module_kind,
            'duration': self.duration,
        }


@dataclass(frozen=True)
class ResolvedPlaylist:
    playlist_id: int
    items: Tuple[MediaRef, ...] = ()

    def widget_ids(self) -> List[int]:
        return [item.widget_id for item in self.items if item.widget_id is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'resolved',
            'kind': 'playlist',
            'id': self.playlist_id,
            'items': [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class ResolvedDataset:
    dataset_id: int
    columns: Tuple[Dict[str, Any], ...] = ()
    rows: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'resolved',
            'kind': 'dataset',
            'id': self.dataset_id,
            'columns': list(self.columns),
            'rows': list(self.rows),
        }


@dataclass(frozen=True)
class UnresolvedReference:
    """
    Marker for a sub-resource that could not be resolved.

    Distinct from an empty result: the UI renders a placeholder and offers
    an explicit refresh.
    """
    ref: SubResourceRef
    reason: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'unresolved',
            'kind': self.ref.kind,
            'id': self.ref.cache_key[1],
            'reason': self.reason,
        }


ResolutionResult = Union[ResolvedPlaylist, ResolvedDataset, UnresolvedReference]


# =============================================================================
# Scene
# =============================================================================


@dataclass(frozen=True)
class EmptyContent:
    """Region without widgets."""

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'empty'}


@dataclass(frozen=True)
class PlaceholderContent:
    """Generic placeholder for unknown kinds or missing references."""
    module_kind: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'placeholder', 'module_kind': self.module_kind, 'reason': self.reason}


@dataclass(frozen=True)
class MediaContent:
    """Image or video rendered directly from attached media."""
    module_kind: str
    media_ids: Tuple[int, ...]

    @property
    def primary_media_id(self) -> int:
        return self.media_ids[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'media',
            'module_kind': self.module_kind,
            'media_id': self.primary_media_id,
            'media_ids': list(self.media_ids),
        }


@dataclass(frozen=True)
class TextContent:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'text', 'text': self.text}


@dataclass(frozen=True)
class CanvasContent:
    """Canvas elements with geometry already scaled to the viewport."""
    elements: Tuple[CanvasElement, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'canvas', 'elements': [element.to_dict() for element in self.elements]}


@dataclass(frozen=True)
class SubResourceContent:
    """Content backed by a sub-playlist or dataset."""
    ref: SubResourceRef
    result: Optional[ResolutionResult] = None

    @property
    def loading(self) -> bool:
        return self.result is None

    @property
    def unresolved(self) -> bool:
        return isinstance(self.result, UnresolvedReference)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'sub_resource',
            'ref': self.ref.to_dict(),
            'loading': self.loading,
            'result': self.result.to_dict() if self.result is not None else None,
        }


@dataclass(frozen=True)
class IframeContent:
    """Externally rendered widget HTML served through the widget proxy."""
    resource_path: str
    data: Optional[SubResourceContent] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'iframe',
            'resource_path': self.resource_path,
            'data': self.data.to_dict() if self.data is not None else None,
        }


SceneContent = Union[
    EmptyContent,
    PlaceholderContent,
    MediaContent,
    TextContent,
    CanvasContent,
    SubResourceContent,
    IframeContent,
]


@dataclass(frozen=True)
class SceneNode:
    """One renderable region, scaled to the target viewport."""
    region_id: int
    scaled_geometry: Rect
    render_strategy: RenderStrategy
    primary_widget: Optional[Widget]
    overflow_count: int
    content: SceneContent

    def to_dict(self) -> Dict[str, Any]:
        return {
            'region_id': self.region_id,
            'scaled_geometry': self.scaled_geometry.to_dict(),
            'render_strategy': self.render_strategy.value,
            'primary_widget': self.primary_widget.to_dict() if self.primary_widget else None,
            'overflow_count': self.overflow_count,
            'content': self.content.to_dict(),
        }
