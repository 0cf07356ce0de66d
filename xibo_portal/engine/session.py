"""
Edit Session State Machine

Tracks whether the displayed layout is the live published version or an
editable draft, and drives the checkout needed to edit a published layout.

Valid transitions:
- IDLE -> VIEWING_PUBLISHED / VIEWING_DRAFT (open)
- VIEWING_PUBLISHED -> CHECKING_OUT (open for edit)
- CHECKING_OUT -> VIEWING_DRAFT (checkout returned a draft id)
- CHECKING_OUT -> SEARCHING_DRAFT (layout already checked out)
- SEARCHING_DRAFT -> VIEWING_DRAFT (existing draft found)
- CHECKING_OUT / SEARCHING_DRAFT -> CHECKOUT_FAILED
- VIEWING_DRAFT -> VIEWING_PUBLISHED (publish)

Whenever the active layout id changes the view is restarted, so in-flight
sub-resource fetches for the previous id are discarded.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from xibo_portal.engine.errors import CheckoutConflict, CheckoutFailed, StateTransitionError
from xibo_portal.engine.models import LayoutDocument, PublishState, coerce_int, parse_publish_state
from xibo_portal.engine.resolver import ViewState
from xibo_portal.services import ServiceError


logger = logging.getLogger(__name__)


DEFAULT_SEARCH_ATTEMPTS = 3
DEFAULT_SEARCH_BACKOFF = 0.5  # seconds

_UNSET = object()


class EditState(Enum):
    """States of an edit session."""
    IDLE = "idle"
    VIEWING_PUBLISHED = "viewing_published"
    CHECKING_OUT = "checking_out"
    SEARCHING_DRAFT = "searching_draft"
    VIEWING_DRAFT = "viewing_draft"
    CHECKOUT_FAILED = "checkout_failed"


@dataclass(frozen=True)
class EditSessionState:
    """Snapshot of an edit session for UI chrome."""
    state: EditState
    active_layout_id: Optional[int]
    publish_state: Optional[PublishState]
    draft_of: Optional[int] = None
    error: Optional[str] = None
    ambiguous_draft_ids: Tuple[int, ...] = ()

    @property
    def is_draft(self) -> bool:
        return self.state == EditState.VIEWING_DRAFT

    @property
    def can_publish(self) -> bool:
        return self.state == EditState.VIEWING_DRAFT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'active_layout_id': self.active_layout_id,
            'publish_state': self.publish_state.value if self.publish_state else None,
            'draft_of': self.draft_of,
            'is_draft': self.is_draft,
            'can_publish': self.can_publish,
            'error': self.error,
            'ambiguous_draft_ids': list(self.ambiguous_draft_ids),
        }


StateCallback = Callable[['EditSession', EditState, EditState], None]


class EditSession:
    """
    Checkout/draft/publish state machine for one layout view.

    The gateway must provide fetch_layout, fetch_collection, checkout and
    publish.
    """

    _OPEN_STATES = [EditState.VIEWING_PUBLISHED, EditState.VIEWING_DRAFT]

    VALID_TRANSITIONS: Dict[EditState, List[EditState]] = {
        EditState.IDLE: _OPEN_STATES,
        EditState.VIEWING_PUBLISHED: _OPEN_STATES + [EditState.CHECKING_OUT],
        EditState.CHECKING_OUT: [
            EditState.VIEWING_DRAFT,
            EditState.SEARCHING_DRAFT,
            EditState.CHECKOUT_FAILED,
        ],
        EditState.SEARCHING_DRAFT: [EditState.VIEWING_DRAFT, EditState.CHECKOUT_FAILED],
        EditState.VIEWING_DRAFT: _OPEN_STATES,
        EditState.CHECKOUT_FAILED: _OPEN_STATES + [EditState.CHECKING_OUT],
    }

    def __init__(
        self,
        gateway: Any,
        view: Optional[ViewState] = None,
        max_search_attempts: int = DEFAULT_SEARCH_ATTEMPTS,
        search_backoff: float = DEFAULT_SEARCH_BACKOFF,
        on_state_changed: Optional[StateCallback] = None,
    ):
        """
        Initialize the edit session.

        Args:
            gateway: Upstream layout gateway
            view: ViewState restarted whenever the active layout changes
            max_search_attempts: Bound on draft searches after a checkout conflict
            search_backoff: Seconds to wait between draft searches
            on_state_changed: Callback (self, old_state, new_state)
        """
        self._gateway = gateway
        self.view = view or ViewState()
        self._max_search_attempts = max(1, max_search_attempts)
        self._search_backoff = search_backoff
        self._on_state_changed = on_state_changed
        self._lock = threading.Lock()

        self._state = EditState.IDLE
        self._document: Optional[LayoutDocument] = None
        self._draft_of: Optional[int] = None
        self._error: Optional[str] = None
        self._ambiguous_draft_ids: Tuple[int, ...] = ()

    @property
    def state(self) -> EditState:
        with self._lock:
            return self._state

    @property
    def document(self) -> Optional[LayoutDocument]:
        with self._lock:
            return self._document

    @property
    def active_layout_id(self) -> Optional[int]:
        with self._lock:
            return self._document.id if self._document else None

    def snapshot(self) -> EditSessionState:
        with self._lock:
            return EditSessionState(
                state=self._state,
                active_layout_id=self._document.id if self._document else None,
                publish_state=self._document.publish_state if self._document else None,
                draft_of=self._draft_of,
                error=self._error,
                ambiguous_draft_ids=self._ambiguous_draft_ids,
            )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def open(self, layout_id: int, for_edit: bool = False) -> LayoutDocument:
        """
        Open a layout; the initial state follows its publish state.

        A draft opens straight into VIEWING_DRAFT and is never checked out.

        Args:
            layout_id: Layout to display
            for_edit: Check out a published layout immediately

        Returns:
            The layout document now displayed (a draft if checkout ran)

        Raises:
            CheckoutFailed: If for_edit checkout could not produce a draft
        """
        document = self._gateway.fetch_layout(layout_id)
        with self._lock:
            self._ambiguous_draft_ids = ()

        if document.is_draft:
            self._move(EditState.VIEWING_DRAFT, document=document, draft_of=document.parent_id)
            return document

        self._move(EditState.VIEWING_PUBLISHED, document=document, draft_of=None)
        if for_edit:
            return self.open_for_edit()
        return document

    def open_for_edit(self) -> LayoutDocument:
        """
        Check out the published layout and redirect to its draft.

        On an "already checked out" conflict the existing draft is searched
        for a bounded number of attempts.

        Returns:
            The draft layout document

        Raises:
            CheckoutFailed: If no draft could be obtained
            StateTransitionError: If no published layout is open
        """
        with self._lock:
            state = self._state
            document = self._document

        if state == EditState.VIEWING_DRAFT:
            logger.debug("Layout %s is already a draft, skipping checkout", document.id)
            return document

        if document is None:
            raise StateTransitionError("No layout is open")

        published_id = document.id
        with self._lock:
            self._ambiguous_draft_ids = ()
        self._move(EditState.CHECKING_OUT)

        try:
            draft_id = self._gateway.checkout(published_id)
        except CheckoutConflict:
            logger.info("Layout %s already checked out, searching for its draft", published_id)
            draft_id = self._search_for_draft(published_id)
        except ServiceError as e:
            self._fail(published_id, f"Checkout of layout {published_id} failed: {e.message}")

        return self._redirect_to_draft(draft_id, published_id)

    def publish(self) -> LayoutDocument:
        """
        Publish the current draft and collapse back to its parent id.

        Returns:
            The published layout document

        Raises:
            StateTransitionError: If no draft is open
            ServiceError: If upstream rejects the publish (state unchanged)
        """
        with self._lock:
            if self._state != EditState.VIEWING_DRAFT:
                raise StateTransitionError(f"Cannot publish from {self._state.name}")
            draft = self._document
            parent_id = self._draft_of or draft.parent_id

        self._gateway.publish(draft.id)
        logger.info("Published draft %s of layout %s", draft.id, parent_id)

        target_id = parent_id if parent_id is not None else draft.id
        document = self._gateway.fetch_layout(target_id)
        self._move(EditState.VIEWING_PUBLISHED, document=document, draft_of=None)
        return document

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _search_for_draft(self, published_id: int) -> int:
        self._move(EditState.SEARCHING_DRAFT)

        for attempt in range(1, self._max_search_attempts + 1):
            try:
                page = self._gateway.fetch_collection('layout', {'parentId': published_id})
            except ServiceError as e:
                logger.warning(
                    "Draft search for layout %s failed (attempt %d/%d): %s",
                    published_id, attempt, self._max_search_attempts, e,
                )
            else:
                candidates = find_draft_ids(page.items, published_id)
                if candidates:
                    if len(candidates) > 1:
                        logger.warning(
                            "Layout %s has %d drafts %s, using %s",
                            published_id, len(candidates), candidates, candidates[0],
                        )
                        with self._lock:
                            self._ambiguous_draft_ids = tuple(candidates)
                    return candidates[0]

            if attempt < self._max_search_attempts and self._search_backoff > 0:
                time.sleep(self._search_backoff * attempt)

        self._fail(published_id, f"Layout {published_id} is checked out but no draft was found")

    def _redirect_to_draft(self, draft_id: int, published_id: int) -> LayoutDocument:
        try:
            draft = self._gateway.fetch_layout(draft_id)
        except ServiceError as e:
            self._fail(published_id, f"Draft {draft_id} could not be loaded: {e.message}")

        logger.info("Layout %s checked out as draft %s", published_id, draft_id)
        self._move(EditState.VIEWING_DRAFT, document=draft, draft_of=published_id)
        return draft

    def _fail(self, layout_id: int, message: str) -> None:
        logger.error(message)
        self._move(EditState.CHECKOUT_FAILED, error=message)
        raise CheckoutFailed(layout_id, message)

    def _move(
        self,
        target: EditState,
        document: Optional[LayoutDocument] = None,
        draft_of: Any = _UNSET,
        error: Optional[str] = None,
    ) -> None:
        """
        Transition to target state, optionally switching the active document.

        Raises:
            StateTransitionError: If the transition is not valid
        """
        restart_view = None

        with self._lock:
            old_state = self._state
            if target != old_state and target not in self.VALID_TRANSITIONS.get(old_state, []):
                raise StateTransitionError(
                    f"Invalid transition: {old_state.name} -> {target.name}"
                )

            if document is not None:
                old_id = self._document.id if self._document else None
                if document.id != old_id:
                    restart_view = document.id
                self._document = document
            if draft_of is not _UNSET:
                self._draft_of = draft_of
            self._error = error
            self._state = target

            if target != old_state:
                logger.info("Edit session transition: %s -> %s", old_state.name, target.name)

        if restart_view is not None:
            self.view.begin(restart_view)

        # Callback outside lock to prevent deadlocks
        if self._on_state_changed and target != old_state:
            try:
                self._on_state_changed(self, old_state, target)
            except Exception as e:
                logger.error("Error in edit session callback: %s", e)

    def __repr__(self) -> str:
        return f"EditSession(state={self.state.name}, layout={self.active_layout_id})"


def find_draft_ids(records: List[Dict[str, Any]], parent_id: int) -> List[int]:
    """
    Ids of draft layouts derived from a parent, lowest first.

    Args:
        records: Raw layout records
        parent_id: Published layout id

    Returns:
        Sorted draft ids
    """
    ids = set()
    for record in records:
        if coerce_int(record.get('parentId')) != parent_id:
            continue
        if parse_publish_state(record) != PublishState.DRAFT:
            continue
        layout_id = coerce_int(record.get('layoutId'))
        if layout_id is not None:
            ids.add(layout_id)
    return sorted(ids)
