"""Tests for shared pagination schemas."""

import pytest
from pydantic import ValidationError

from plate_registry.schemas.common import PaginationMeta, PaginationParams


class TestPaginationParams:
    """Tests for pagination query validation."""

    def test_defaults(self) -> None:
        params = PaginationParams()
        assert params.page == 1
        assert params.page_size == 20

    @pytest.mark.parametrize("fields", [{"page": 0}, {"page_size": 0}, {"page_size": 101}])
    def test_out_of_range_rejected(self, fields: dict[str, int]) -> None:
        with pytest.raises(ValidationError):
            PaginationParams(**fields)


class TestPaginationMeta:
    """Tests for page metadata."""

    @pytest.mark.parametrize(
        ("total", "page_size", "expected_pages"),
        [(0, 20, 1), (20, 20, 1), (21, 20, 2), (95, 10, 10)],
    )
    def test_total_pages(self, total: int, page_size: int, expected_pages: int) -> None:
        meta = PaginationMeta.for_page(total, PaginationParams(page=2, page_size=page_size))
        assert meta.total == total
        assert meta.page == 2
        assert meta.page_size == page_size
        assert meta.total_pages == expected_pages
