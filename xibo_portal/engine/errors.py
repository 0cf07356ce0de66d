"""
Layout engine error conditions.

Each condition carries a stable ``code`` so the UI can pick a message
without parsing text. Conditions that are always recovered locally
(DecodeError, ResolutionError) are logged by the engine and never reach
the HTTP layer.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base exception for all layout engine errors."""

    code = 'engine_error'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


class DecodeError(EngineError):
    """Malformed JSON inside a widget option value."""

    code = 'decode_error'

    def __init__(self, option: str, message: str):
        super().__init__(message, {'option': option})
        self.option = option


class ResolutionError(EngineError):
    """A referenced playlist or dataset could not be fetched."""

    code = 'resolution_error'


class LayoutNotFound(EngineError):
    """The upstream CMS has no layout with the requested id."""

    code = 'layout_not_found'

    def __init__(self, layout_id: int):
        super().__init__(f"Layout {layout_id} not found", {'layout_id': layout_id})
        self.layout_id = layout_id


class CheckoutConflict(EngineError):
    """Upstream reports the layout is already checked out."""

    code = 'checkout_conflict'

    def __init__(self, layout_id: int, message: str = 'Layout is already checked out'):
        super().__init__(message, {'layout_id': layout_id})
        self.layout_id = layout_id


class CheckoutFailed(EngineError):
    """Checkout failed and no existing draft could be found."""

    code = 'checkout_failed'

    def __init__(self, layout_id: int, message: str):
        super().__init__(message, {'layout_id': layout_id})
        self.layout_id = layout_id


class StateTransitionError(EngineError):
    """Raised when an invalid edit session transition is attempted."""

    code = 'invalid_transition'


class MutationError(EngineError):
    """Upstream rejected a widget update."""

    code = 'mutation_error'

    def __init__(
        self,
        message: str,
        widget_id: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, {'widget_id': widget_id})
        self.widget_id = widget_id
        self.status_code = status_code


class EditTargetNotFound(MutationError):
    """The widget or element to edit does not exist in the layout."""

    code = 'edit_target_not_found'


@dataclass(frozen=True)
class UnsupportedEditTarget:
    """
    Result returned instead of attempting an edit the upstream CMS cannot
    apply, such as text inside a canvas widget. The UI routes the user to
    the upstream editor.
    """
    widget_id: int
    reason: str
    element_id: Optional[str] = None

    code = 'unsupported_edit_target'

    @property
    def message(self) -> str:
        return f"Widget {self.widget_id} cannot be edited here ({self.reason})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': {
                'widget_id': self.widget_id,
                'element_id': self.element_id,
                'reason': self.reason,
            },
        }
