"""
Tests for collection fetching.

Covers:
- Normalising the different Xibo list response shapes
- Deduplication and owner filtering
- Pagination stop conditions
- User context validation
"""

from unittest.mock import MagicMock

import pytest

from xibo_portal.services import UserContextError
from xibo_portal.services.collection_service import (
    CollectionService,
    UserContext,
    dedupe_by_id,
    filter_owned_by_user,
    normalize_list_response,
)


@pytest.fixture
def user():
    return UserContext(token='user-token', user_id=7, username='signage_admin')


class TestUserContext:

    def test_requires_token(self):
        with pytest.raises(UserContextError):
            UserContext(token='', user_id=7)

    def test_requires_identity(self):
        with pytest.raises(UserContextError):
            UserContext(token='t')

    def test_username_only(self):
        assert UserContext(token='t', username='admin').user_id is None


class TestNormalizeListResponse:
    """Tests for normalize_list_response()."""

    def test_bare_list(self):
        page = normalize_list_response([{'id': 1}, {'id': 2}])
        assert page.total == 2

    def test_data_list_with_total(self):
        page = normalize_list_response({'data': [{'id': 1}], 'recordsFiltered': 40, 'recordsTotal': 90})
        assert page.items == [{'id': 1}]
        assert page.total == 40

    def test_nested_data(self):
        page = normalize_list_response({'data': {'data': [{'id': 1}], 'recordsTotal': '12'}})
        assert page.total == 12

    def test_single_object(self):
        page = normalize_list_response({'data': {'layoutId': 5}})
        assert page.items == [{'layoutId': 5}]
        assert page.total == 1

    @pytest.mark.parametrize('response', [None, {}, 'text', {'data': []}])
    def test_empty(self, response):
        assert normalize_list_response(response).items == []


class TestDedupeAndFilter:
    """Tests for dedupe_by_id() and filter_owned_by_user()."""

    def test_dedupe_keeps_first(self):
        items = [{'layoutId': 1, 'v': 'a'}, {'id': 1, 'v': 'b'}, {'layoutId': 2}, {'name': 'x'}, {'name': 'y'}]

        result = dedupe_by_id(items, ['layoutId', 'id'])

        assert [item.get('v') for item in result[:1]] == ['a']
        assert len(result) == 4

    def test_owner_by_id(self):
        items = [{'ownerId': 7}, {'ownerId': 8}, {'owner': {'id': '7'}}, {'owner_id': '7'}]
        assert len(filter_owned_by_user(items, 7, None)) == 3

    def test_owner_by_username(self):
        items = [{'owner': 'Signage-Admin'}, {'owner': 'other'}]
        assert filter_owned_by_user(items, None, 'signage_admin') == [{'owner': 'Signage-Admin'}]

    def test_no_identity(self):
        assert filter_owned_by_user([{'ownerId': 7}], None, None) == []


class TestCollectionService:
    """Tests for paging through collections."""

    def test_walks_until_total(self, user):
        client = MagicMock()
        client.get.side_effect = [
            {'data': [{'layoutId': 1, 'ownerId': 7}, {'layoutId': 2, 'ownerId': 7}], 'recordsTotal': 3},
            {'data': [{'layoutId': 3, 'ownerId': 7}], 'recordsTotal': 3},
        ]

        page = CollectionService(client, user, page_size=2).fetch_user_scoped('/layout', ['layoutId'])

        assert [item['layoutId'] for item in page.items] == [1, 2, 3]
        assert client.get.call_count == 2
        second_params = client.get.call_args_list[1].kwargs['params']
        assert second_params['start'] == 2
        assert second_params['ownerId'] == 7
        assert client.get.call_args_list[1].kwargs['token'] == 'user-token'

    def test_stops_on_empty_page(self, user):
        client = MagicMock()
        client.get.side_effect = [{'data': [{'id': 1}]}, {'data': []}]

        page = CollectionService(client, user, page_size=1).fetch_library('/library', ['id'])

        assert page.total == 1
        assert client.get.call_count == 2

    def test_max_pages_bound(self, user):
        client = MagicMock()
        client.get.side_effect = lambda endpoint, params, token: {'data': [{'id': params['start']}]}

        page = CollectionService(client, user, page_size=1, max_pages=3).fetch_library('/library', ['id'])

        assert client.get.call_count == 3
        assert page.total == 3

    def test_query_overrides_and_none_dropped(self, user):
        client = MagicMock()
        client.get.return_value = []

        CollectionService(client, user).fetch_library('/library', ['id'], {'type': 'image', 'tags': None})

        params = client.get.call_args.kwargs['params']
        assert params['type'] == 'image'
        assert 'tags' not in params
