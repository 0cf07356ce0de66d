"""
Widget Option Decoder

Parses a widget's option bag, an ordered list of ``{option, value}`` pairs
where several values are JSON strings, into typed fields:
- scalar text
- sub-playlist reference
- dataset reference
- canvas elements (text, image, video)

Every known option name maps to its own variant; anything else becomes
UnknownOption so it survives a round trip untouched. Decoding never
raises: malformed JSON is logged and the option is treated as absent.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from xibo_portal.engine.errors import DecodeError
from xibo_portal.engine.models import (
    CanvasElement,
    CanvasElementKind,
    DatasetRef,
    OptionPair,
    PlaylistRef,
    Rect,
    RefConfidence,
    Widget,
    coerce_float,
    coerce_int,
)


logger = logging.getLogger(__name__)


TEXT_OPTION = 'text'
SUB_PLAYLISTS_OPTION = 'subPlaylists'
DATASET_OPTION = 'dataSetId'
ELEMENTS_OPTION = 'elements'

# Checked in order against the words of an element's type/id tag
ELEMENT_KIND_TAGS = (
    ('image', CanvasElementKind.IMAGE),
    ('video', CanvasElementKind.VIDEO),
    ('text', CanvasElementKind.TEXT),
)
ELEMENT_TAG_SEPARATORS = re.compile(r'[\s_\-.]+')


# =============================================================================
# Option Variants
# =============================================================================


@dataclass(frozen=True)
class TextOption:
    name: str
    raw: Any
    text: str


@dataclass(frozen=True)
class SubPlaylistsOption:
    name: str
    raw: Any
    entries: Tuple[Any, ...]


@dataclass(frozen=True)
class DataSetOption:
    name: str
    raw: Any
    dataset_id: Optional[int]


@dataclass(frozen=True)
class ElementsOption:
    name: str
    raw: Any
    elements: Tuple[CanvasElement, ...]


@dataclass(frozen=True)
class UnknownOption:
    """Unrecognised or undecodable option, kept verbatim."""
    name: str
    raw: Any


TypedOption = Union[TextOption, SubPlaylistsOption, DataSetOption, ElementsOption, UnknownOption]


@dataclass(frozen=True)
class DecodedOptions:
    """Typed view over a widget's option bag."""
    scalar_text: Optional[str] = None
    sub_playlist_ref: Optional[PlaylistRef] = None
    dataset_ref: Optional[DatasetRef] = None
    canvas_elements: Tuple[CanvasElement, ...] = ()
    options: Tuple[TypedOption, ...] = ()

    @property
    def has_elements(self) -> bool:
        """True if the widget carries an elements option, even an empty one."""
        return any(isinstance(option, ElementsOption) for option in self.options)

    def references(self) -> List[Union[PlaylistRef, DatasetRef]]:
        """All sub-resource references this widget participates in."""
        refs: List[Union[PlaylistRef, DatasetRef]] = []
        if self.sub_playlist_ref is not None:
            refs.append(self.sub_playlist_ref)
        if self.dataset_ref is not None:
            refs.append(self.dataset_ref)
        return refs

    def find_element(self, element_id: str) -> Optional[CanvasElement]:
        for element in self.canvas_elements:
            if element.element_id == element_id:
                return element
        return None


# =============================================================================
# Decoding
# =============================================================================


def _load_json(name: str, value: Any) -> Any:
    """
    Parse a JSON-in-JSON option value.

    Values already decoded by the transport are returned as-is. Empty values
    decode to None.

    Raises:
        DecodeError: If the value is a string that is not valid JSON
    """
    if isinstance(value, (list, dict, int, float)) and not isinstance(value, bool):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(name, f"Option '{name}' is not valid JSON: {e}")


def _element_properties(element: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an element's ``properties`` list of {id, value} into a dict."""
    properties = element.get('properties')
    if isinstance(properties, dict):
        return properties
    flattened = {}
    if isinstance(properties, list):
        for prop in properties:
            if isinstance(prop, dict) and 'id' in prop:
                flattened[prop['id']] = prop.get('value')
    return flattened


def _classify_element_kind(element: Dict[str, Any]) -> Optional[CanvasElementKind]:
    tag = f"{element.get('type') or ''} {element.get('id') or ''}".lower()
    words = set(ELEMENT_TAG_SEPARATORS.split(tag))
    for word, kind in ELEMENT_KIND_TAGS:
        if word in words:
            return kind
    return None


def _parse_element(element: Any, page_index: int, index: int) -> Optional[CanvasElement]:
    if not isinstance(element, dict):
        return None

    kind = _classify_element_kind(element)
    if kind is None:
        return None

    props = _element_properties(element)
    element_id = element.get('elementId') or element.get('uniqueId') or f"{page_index}-{index}"

    text = element.get('text', props.get('text'))
    media_id = coerce_int(element.get('mediaId', props.get('mediaId')))
    font_size = element.get('fontSize', props.get('fontSize'))
    font_color = element.get('fontColor', props.get('fontColor'))

    return CanvasElement(
        element_id=str(element_id),
        kind=kind,
        geometry=Rect(
            x=coerce_float(element.get('left')),
            y=coerce_float(element.get('top')),
            width=coerce_float(element.get('width')),
            height=coerce_float(element.get('height')),
        ),
        text=str(text) if text is not None else None,
        media_id=media_id,
        font_size=coerce_float(font_size) if font_size not in (None, '') else None,
        font_color=str(font_color) if font_color not in (None, '') else None,
    )


def parse_canvas_elements(pages: Any) -> Tuple[CanvasElement, ...]:
    """
    Flatten an array-of-pages structure into canvas elements.

    Elements whose tag is neither text, image nor video are dropped.

    Args:
        pages: Decoded elements option (list of pages or a single page)

    Returns:
        Canvas elements in source order
    """
    if isinstance(pages, dict):
        pages = [pages]
    if not isinstance(pages, list):
        return ()

    elements = []
    for page_index, page in enumerate(pages):
        page_elements = page.get('elements') if isinstance(page, dict) else None
        if not isinstance(page_elements, list):
            continue
        for index, raw_element in enumerate(page_elements):
            element = _parse_element(raw_element, page_index, index)
            if element is not None:
                elements.append(element)
    return tuple(elements)


def classify_option(pair: OptionPair) -> TypedOption:
    """
    Map one option pair onto its typed variant.

    Raises:
        DecodeError: If a JSON-valued option cannot be parsed
    """
    name = pair.option
    value = pair.value

    if name == TEXT_OPTION:
        return TextOption(name=name, raw=value, text='' if value is None else str(value))

    if name == SUB_PLAYLISTS_OPTION:
        entries = _load_json(name, value)
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise DecodeError(name, f"Option '{name}' is not a list")
        return SubPlaylistsOption(name=name, raw=value, entries=tuple(entries))

    if name == DATASET_OPTION:
        parsed = _load_json(name, value)
        dataset_id = coerce_int(parsed)
        if parsed is not None and dataset_id is None:
            raise DecodeError(name, f"Option '{name}' is not a dataset id")
        return DataSetOption(name=name, raw=value, dataset_id=dataset_id)

    if name == ELEMENTS_OPTION:
        pages = _load_json(name, value)
        return ElementsOption(name=name, raw=value, elements=parse_canvas_elements(pages))

    return UnknownOption(name=name, raw=value)


def _first_sub_playlist_id(option: SubPlaylistsOption) -> Optional[int]:
    if not option.entries:
        return None
    first = option.entries[0]
    if isinstance(first, dict):
        return coerce_int(first.get('playlistId'))
    return coerce_int(first)


def decode(widget: Widget) -> DecodedOptions:
    """
    Decode a widget's option bag.

    Total and pure: the same widget always yields an equal result and no
    exception escapes.

    Sub-playlist lookup order:
    1. First entry of a non-empty subPlaylists option (high confidence)
    2. The widget's own playlistId field (low confidence; this field usually
       names the parent playlist rather than a cross-reference)

    Args:
        widget: Widget with raw options

    Returns:
        DecodedOptions for the widget
    """
    typed: List[TypedOption] = []
    scalar_text = None
    sub_playlist_id = None
    dataset_ref = None
    canvas_elements: Tuple[CanvasElement, ...] = ()

    for pair in widget.raw_options:
        try:
            option = classify_option(pair)
        except DecodeError as e:
            logger.warning("Widget %s: %s", widget.id, e.message)
            typed.append(UnknownOption(name=pair.option, raw=pair.value))
            continue

        typed.append(option)

        if isinstance(option, TextOption):
            scalar_text = option.text
        elif isinstance(option, SubPlaylistsOption) and sub_playlist_id is None:
            sub_playlist_id = _first_sub_playlist_id(option)
        elif isinstance(option, DataSetOption) and option.dataset_id is not None:
            dataset_ref = DatasetRef(dataset_id=option.dataset_id)
        elif isinstance(option, ElementsOption):
            canvas_elements = canvas_elements + option.elements

    if sub_playlist_id is not None:
        sub_playlist_ref = PlaylistRef(sub_playlist_id, RefConfidence.HIGH)
    elif widget.playlist_id is not None:
        sub_playlist_ref = PlaylistRef(widget.playlist_id, RefConfidence.LOW)
    else:
        sub_playlist_ref = None

    return DecodedOptions(
        scalar_text=scalar_text,
        sub_playlist_ref=sub_playlist_ref,
        dataset_ref=dataset_ref,
        canvas_elements=canvas_elements,
        options=tuple(typed),
    )


# =============================================================================
# Encoding
# =============================================================================


def _serialize(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


def encode_options(decoded: DecodedOptions, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Re-serialise the complete option structure for an upstream update.

    Options not named in overrides are re-emitted with their original raw
    value; overridden options keep their position and new option names are
    appended. List and dict values are JSON encoded.

    Args:
        decoded: Decoded options of the widget being edited
        overrides: Option name to new value

    Returns:
        Ordered option name to value mapping
    """
    overrides = dict(overrides or {})
    payload: Dict[str, Any] = {}

    for option in decoded.options:
        if option.name in overrides:
            payload[option.name] = _serialize(overrides.pop(option.name))
        else:
            payload[option.name] = _serialize(option.raw)

    for name, value in overrides.items():
        payload[name] = _serialize(value)

    return payload
