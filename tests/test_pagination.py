"""Tests for paging helpers and configuration defaults."""
import pytest

from stockledger.exceptions import ValidationError
from stockledger.schemas.pagination import Page, check_limit, check_paging, resolve_pagination

from conftest import make_settings


class TestPaging:
    def test_offsets_are_one_based(self):
        assert check_paging(1, 10) == (0, 10)
        assert check_paging(3, 25) == (50, 25)

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (True, 10), ("1", 10)])
    def test_rejects_invalid_values(self, page, page_size):
        with pytest.raises(ValidationError):
            check_paging(page, page_size)

    def test_limit(self):
        assert check_limit(5) == 5
        with pytest.raises(ValidationError):
            check_limit(-1)

    def test_total_pages(self):
        assert Page.build([], 0, 1, 10).total_pages == 0
        assert Page.build([1], 21, 3, 10).total_pages == 3


class TestResolvePagination:
    def test_defaults(self):
        assert resolve_pagination(make_settings()) == (1, 10)

    def test_caps_limit(self):
        assert resolve_pagination(make_settings(), page=2, limit=500) == (2, 100)

    def test_configured_bounds(self):
        settings = make_settings(DEFAULT_PAGE_SIZE=20, MAX_PAGE_SIZE=50)
        assert resolve_pagination(settings) == (1, 20)
        assert resolve_pagination(settings, limit=80) == (1, 50)

    def test_rejects_non_positive(self):
        with pytest.raises(ValidationError):
            resolve_pagination(make_settings(), page=0)
