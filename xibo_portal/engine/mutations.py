"""
Text/Media Mutation Controller

Applies in-place edits to a widget through the upstream CMS:
- text edits replace the widget's text option
- media swaps replace the widget's attached media

The upstream format has no partial updates, so the whole option structure
is re-serialised with only the edited field changed. Canvas widgets are
refused with an UnsupportedEditTarget result and never sent upstream.

After a successful submit the sub-resources the widget participates in are
invalidated and the scene is rebuilt from a fresh copy of the layout once
those sub-resources have been fetched again (bounded by a timeout). A
rejected submit raises MutationError and leaves the caller's scene as it
was.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from xibo_portal.engine.errors import EditTargetNotFound, MutationError, UnsupportedEditTarget
from xibo_portal.engine.models import LayoutDocument, SceneNode, Viewport, Widget
from xibo_portal.engine.options import TEXT_OPTION, DecodedOptions, decode, encode_options
from xibo_portal.engine.scene import CANVAS_KINDS, MEDIA_KINDS, TEXT_KINDS
from xibo_portal.services import ServiceError


logger = logging.getLogger(__name__)


MEDIA_IDS_FIELD = 'mediaIds'


@dataclass(frozen=True)
class MutationResult:
    """Outcome of an applied edit."""
    widget_id: int
    layout: LayoutDocument
    scene: List[SceneNode]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'widget_id': self.widget_id,
            'layout': self.layout.to_dict(),
            'scene': [node.to_dict() for node in self.scene],
        }


EditOutcome = Union[MutationResult, UnsupportedEditTarget]


class MutationController:
    """Applies text edits and media swaps and reconciles the scene."""

    def __init__(
        self,
        gateway: Any,
        resolver: Any,
        builder: Any,
        resolve_timeout: Optional[float] = None,
    ):
        """
        Initialize the controller.

        Args:
            gateway: Upstream gateway providing submit_widget_update and fetch_layout
            resolver: SubResourceResolver whose cache is invalidated after edits
            builder: SceneBuilder used to rebuild the scene
            resolve_timeout: Seconds to wait for invalidated sub-resources to
                reload before the rebuilt scene is returned, None to wait
                indefinitely
        """
        self._gateway = gateway
        self._resolver = resolver
        self._builder = builder
        self._resolve_timeout = resolve_timeout

    def apply_text_edit(
        self,
        layout: LayoutDocument,
        widget_id: int,
        element_id: Optional[str],
        new_value: str,
        viewport: Viewport,
    ) -> EditOutcome:
        """
        Replace the text of a widget.

        Args:
            layout: Layout currently displayed
            widget_id: Widget to edit
            element_id: Canvas element id, or None for the widget's text option
            new_value: Replacement text
            viewport: Viewport used to rebuild the scene

        Returns:
            MutationResult, or UnsupportedEditTarget for canvas widgets
            (whether or not the element exists) and widgets without a text
            field

        Raises:
            EditTargetNotFound: If the widget is not part of the layout, or an
                element id is given for a widget that has no elements
            MutationError: If upstream rejects the update
        """
        widget, decoded = self._locate(layout, widget_id)

        if self._is_canvas(widget, decoded):
            return UnsupportedEditTarget(widget_id=widget_id, reason='canvas_element', element_id=element_id)

        if element_id is not None and decoded.find_element(element_id) is None:
            raise EditTargetNotFound(
                f"Widget {widget_id} has no element {element_id}",
                widget_id=widget_id,
            )

        if widget.kind not in TEXT_KINDS and decoded.scalar_text is None:
            return UnsupportedEditTarget(widget_id=widget_id, reason='no_text_field')

        payload = encode_options(decoded, {TEXT_OPTION: new_value})
        return self._submit(layout, widget, decoded, payload, viewport)

    def apply_media_swap(
        self,
        layout: LayoutDocument,
        widget_id: int,
        new_media_id: int,
        viewport: Viewport,
    ) -> EditOutcome:
        """
        Replace the media attached to a widget.

        Returns:
            MutationResult, or UnsupportedEditTarget for canvas widgets and
            widgets without a media slot

        Raises:
            EditTargetNotFound: If the widget is not part of the layout
            MutationError: If upstream rejects the update
        """
        widget, decoded = self._locate(layout, widget_id)

        if self._is_canvas(widget, decoded):
            return UnsupportedEditTarget(widget_id=widget_id, reason='canvas_element')

        if widget.kind not in MEDIA_KINDS and not widget.attached_media_ids:
            return UnsupportedEditTarget(widget_id=widget_id, reason='no_media_slot')

        payload = encode_options(decoded)
        payload[MEDIA_IDS_FIELD] = [new_media_id]
        return self._submit(layout, widget, decoded, payload, viewport)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _locate(layout: LayoutDocument, widget_id: int) -> Tuple[Widget, DecodedOptions]:
        found = layout.find_widget(widget_id)
        if found is None:
            raise EditTargetNotFound(
                f"Widget {widget_id} not found in layout {layout.id}",
                widget_id=widget_id,
            )
        _, widget = found
        return widget, decode(widget)

    @staticmethod
    def _is_canvas(widget: Widget, decoded: DecodedOptions) -> bool:
        return widget.kind in CANVAS_KINDS or decoded.has_elements

    def _submit(
        self,
        layout: LayoutDocument,
        widget: Widget,
        decoded: DecodedOptions,
        payload: Dict[str, Any],
        viewport: Viewport,
    ) -> MutationResult:
        try:
            self._gateway.submit_widget_update(widget.id, payload)
        except ServiceError as e:
            logger.error("Update of widget %s rejected: %s", widget.id, e)
            raise MutationError(
                f"Update of widget {widget.id} was rejected: {e.message}",
                widget_id=widget.id,
                status_code=getattr(e, 'status_code', None),
            ) from e

        self._resolver.invalidate_widget(widget.id, decoded.references())

        try:
            refreshed = self._gateway.fetch_layout(layout.id)
        except ServiceError as e:
            logger.error("Widget %s updated but layout %s could not be reloaded: %s", widget.id, layout.id, e)
            raise MutationError(
                f"Widget {widget.id} was updated but layout {layout.id} could not be reloaded",
                widget_id=widget.id,
                status_code=getattr(e, 'status_code', None),
            ) from e

        logger.info("Widget %s updated in layout %s", widget.id, layout.id)
        return MutationResult(
            widget_id=widget.id,
            layout=refreshed,
            scene=self._builder.build_resolved(refreshed, viewport, timeout=self._resolve_timeout),
        )
