"""Tests for the per-group catalog cache."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from archiver.catalog.base import ArchiveEntry
from archiver.catalog.cache import CatalogCache, normalize_subpath
from archiver.exceptions import CatalogQueryError
from tests.conftest import FakeCatalog

SUBMITTED = datetime(2024, 1, 10, tzinfo=timezone.utc)


def _entry(package_id: int, subpath: str, filename: str) -> ArchiveEntry:
    return ArchiveEntry(
        filename=filename,
        subpath=subpath,
        package_id=package_id,
        size=1,
        content_hash="0" * 40,
        submitted_at=SUBMITTED,
    )


@pytest.fixture
def populated() -> CatalogCache:
    cache = CatalogCache([1, 2])
    cache.populate(
        [
            _entry(1, "2024/pkg1", "Results.txt"),
            _entry(1, "2024/pkg1/Job_1", "Results.txt"),
            _entry(1, "2024/pkg1/Job_1", "params.xml"),
            _entry(2, "2024/pkg2", "summary.csv"),
            _entry(3, "2024/pkg3", "ignored.txt"),
        ]
    )
    return cache


class TestNormalizeSubpath:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2024\\pkg\\Job_1", "2024/pkg/Job_1"),
            ("/2024/pkg/", "2024/pkg"),
            ("", ""),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_subpath(raw) == expected


class TestFindFiles:
    def test_exact_name_is_case_insensitive(self, populated: CatalogCache) -> None:
        found = populated.find_files("results.TXT", "2024/pkg1", 1, recurse=False)
        assert [entry.subpath for entry in found] == ["2024/pkg1"]

    def test_recursive_subpath(self, populated: CatalogCache) -> None:
        found = populated.find_files("Results.txt", "2024/PKG1", 1)
        assert len(found) == 2

    def test_wildcard_across_package(self, populated: CatalogCache) -> None:
        found = populated.find_files("*.xml", "", 1)
        assert [entry.filename for entry in found] == ["params.xml"]

    def test_wildcard_across_all_packages(self, populated: CatalogCache) -> None:
        names = sorted(entry.filename for entry in populated.find_files("*"))
        assert names == ["Results.txt", "Results.txt", "params.xml", "summary.csv"]

    def test_subpath_prefix_must_end_at_separator(self, populated: CatalogCache) -> None:
        assert populated.find_files("*", "2024/pkg", 1) == []

    def test_unregistered_packages_are_dropped(self, populated: CatalogCache) -> None:
        assert populated.find_files("*", "", 3) == []

    def test_exact_lookup_ignores_glob_characters(self) -> None:
        cache = CatalogCache([1])
        cache.populate(
            [_entry(1, "2024/pkg1", "Sample [copy].xlsx"), _entry(1, "2024/pkg1", "Sample c.xlsx")]
        )

        found = cache.find_exact("sample [COPY].xlsx", "2024/pkg1", 1)

        assert [entry.filename for entry in found] == ["Sample [copy].xlsx"]
        globbed = cache.find_files("Sample [copy].xlsx", "2024/pkg1", 1)
        assert [entry.filename for entry in globbed] == ["Sample c.xlsx"]

    def test_requires_refresh(self) -> None:
        with pytest.raises(RuntimeError, match="refreshed"):
            CatalogCache([1]).find_files("*")


class TestRefresh:
    async def test_single_query_for_all_packages(self) -> None:
        catalog = FakeCatalog([_entry(5, "a", "x.txt"), _entry(6, "b", "y.txt")])
        cache = CatalogCache()
        cache.add_package(5)
        cache.add_package(6)
        cache.add_package(5)

        count = await cache.refresh(catalog)

        assert count == 2
        assert catalog.queries == [[5, 6]]
        assert cache.is_populated

    async def test_empty_cache_does_not_query(self) -> None:
        catalog = FakeCatalog()
        assert await CatalogCache().refresh(catalog) == 0
        assert catalog.queries == []

    async def test_query_errors_propagate(self) -> None:
        catalog = FakeCatalog()
        catalog.error = "timeout"
        cache = CatalogCache([1])
        with pytest.raises(CatalogQueryError, match="timeout"):
            await cache.refresh(catalog)
        assert not cache.is_populated

    def test_cannot_add_after_populate(self) -> None:
        cache = CatalogCache([1])
        cache.populate([])
        with pytest.raises(RuntimeError):
            cache.add_package(2)
