"""
Collection Service - paginated, owner-scoped Xibo collections.

Xibo list endpoints are DataTables-style: they page with start/length,
report recordsTotal/recordsFiltered, and wrap results in several shapes
depending on the endpoint. This module normalises those shapes, walks all
pages up to a bound, removes duplicates and restricts results to the
calling user.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from xibo_portal.engine.models import CollectionPage, coerce_int
from xibo_portal.services import UserContextError


logger = logging.getLogger(__name__)


DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 50
DEFAULT_ORDER_COLUMN = 'modifiedDt'
DEFAULT_ORDER_DIRECTION = 'desc'

IdKey = Union[str, Callable[[Dict[str, Any]], Any]]


@dataclass(frozen=True)
class UserContext:
    """Caller identity relayed to the Xibo API."""
    token: str
    user_id: Optional[Any] = None
    username: Optional[str] = None

    def __post_init__(self):
        if not self.token:
            raise UserContextError("User Xibo token not found. Please login again.")
        if self.user_id is None and not self.username:
            raise UserContextError("User ID or username not found in token. Please login again.")


def normalize_list_response(response: Any) -> CollectionPage:
    """
    Normalise a Xibo list response into a CollectionPage.

    Handles a bare list, ``{data: [...]}``, ``{data: {data: [...]}}`` and a
    single object under ``data``.

    Args:
        response: Parsed JSON response

    Returns:
        CollectionPage with items and total (None if unknown)
    """
    if not response:
        return CollectionPage(items=[], total=None)

    if isinstance(response, list):
        return CollectionPage(items=response, total=len(response))

    if not isinstance(response, dict):
        return CollectionPage(items=[], total=None)

    data = response.get('data')
    total = _first_present(response.get('recordsFiltered'), response.get('recordsTotal'))

    if isinstance(data, list):
        return CollectionPage(items=data, total=coerce_int(total))

    if isinstance(data, dict) and isinstance(data.get('data'), list):
        nested_total = _first_present(data.get('recordsFiltered'), data.get('recordsTotal'), total)
        return CollectionPage(items=data['data'], total=coerce_int(nested_total))

    if data:
        return CollectionPage(items=[data], total=coerce_int(total) if total is not None else 1)

    return CollectionPage(items=[], total=coerce_int(total))


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def dedupe_by_id(items: Iterable[Dict[str, Any]], id_keys: Sequence[IdKey] = ()) -> List[Dict[str, Any]]:
    """
    Remove duplicate records, keeping the first occurrence.

    The id of a record is the first non-empty value among id_keys (field
    names or callables). Records without an id are kept, keyed by position.
    """
    seen = set()
    deduped = []

    for index, item in enumerate(items or []):
        record_id = None
        for key in id_keys:
            value = key(item) if callable(key) else (item or {}).get(key)
            if value not in (None, ''):
                record_id = value
                break
        dedupe_key = str(record_id) if record_id is not None else f"__idx_{index}"

        if dedupe_key not in seen:
            seen.add(dedupe_key)
            deduped.append(item)

    return deduped


def filter_owned_by_user(
    items: Iterable[Dict[str, Any]],
    user_id: Optional[Any],
    username: Optional[str],
) -> List[Dict[str, Any]]:
    """
    Keep records owned by the given user.

    A record matches when ownerId, owner_id, owner.id or owner equals the
    user id, or when owner equals the username ignoring case and treating
    underscores and hyphens alike.
    """
    normalized_id = str(user_id).lower() if user_id is not None else None
    normalized_name = username.lower() if isinstance(username, str) and username else None

    if normalized_id is None and normalized_name is None:
        return []

    owned = []
    for item in items or []:
        owner = item.get('owner')
        candidates = [
            item.get('ownerId'),
            item.get('owner_id'),
            owner.get('id') if isinstance(owner, dict) else None,
            owner if not isinstance(owner, dict) else None,
        ]
        candidates = [str(value).lower() for value in candidates if value is not None]

        if normalized_id is not None and normalized_id in candidates:
            owned.append(item)
            continue

        if normalized_name is not None and owner is not None and not isinstance(owner, dict):
            owner_name = str(owner).lower().strip()
            if owner_name in (
                normalized_name,
                normalized_name.replace('_', '-'),
                normalized_name.replace('-', '_'),
            ):
                owned.append(item)

    return owned


class CollectionService:
    """
    Fetches complete collections from Xibo list endpoints.

    Attributes:
        page_size: Records requested per page
        max_pages: Upper bound on pages walked per collection
    """

    def __init__(
        self,
        client: Any,
        user: UserContext,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self._client = client
        self.user = user
        self.page_size = page_size
        self.max_pages = max_pages

    def fetch_user_scoped(
        self,
        endpoint: str,
        id_keys: Sequence[IdKey],
        query: Optional[Dict[str, Any]] = None,
    ) -> CollectionPage:
        """
        Fetch every page of a collection and keep only the caller's records.

        Args:
            endpoint: Xibo list endpoint (e.g. '/layout')
            id_keys: Fields identifying a record for deduplication
            query: Extra query parameters

        Returns:
            CollectionPage of deduplicated, owner-filtered records
        """
        owner_params = {}
        if self.user.user_id is not None:
            owner_params = {'ownerId': self.user.user_id, 'userId': self.user.user_id}

        items = self._walk(endpoint, {**owner_params, **(query or {})})
        owned = filter_owned_by_user(dedupe_by_id(items, id_keys), self.user.user_id, self.user.username)
        return CollectionPage(items=owned, total=len(owned))

    def fetch_library(
        self,
        endpoint: str,
        id_keys: Sequence[IdKey],
        query: Optional[Dict[str, Any]] = None,
    ) -> CollectionPage:
        """Fetch every page of a shared collection without owner filtering."""
        items = dedupe_by_id(self._walk(endpoint, dict(query or {})), id_keys)
        return CollectionPage(items=items, total=len(items))

    def _walk(self, endpoint: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        collected: List[Dict[str, Any]] = []
        start = 0

        for page in range(self.max_pages):
            params = {
                'start': start,
                'length': self.page_size,
                'draw': page + 1,
                'order[0][column]': DEFAULT_ORDER_COLUMN,
                'order[0][dir]': DEFAULT_ORDER_DIRECTION,
            }
            params.update({key: value for key, value in query.items() if value is not None})

            result = normalize_list_response(
                self._client.get(endpoint, params=params, token=self.user.token)
            )
            if not result.items:
                break

            collected.extend(result.items)
            start += self.page_size

            if result.total is not None and len(collected) >= result.total:
                break
        else:
            logger.warning(f"Stopped fetching {endpoint} after {self.max_pages} pages")

        return collected
