"""Per-group read-through cache of catalog entries."""

from __future__ import annotations

import fnmatch
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from archiver.catalog.base import ArchiveCatalog, ArchiveEntry

logger = logging.getLogger(__name__)

_WILDCARD_CHARS = frozenset("*?[")


def normalize_subpath(subpath: str) -> str:
    """Normalize an archive subpath to ``/`` separators without outer slashes."""
    return subpath.replace("\\", "/").strip("/")


class CatalogCache:
    """Catalog entries for a fixed set of packages, fetched in one query.

    Packages are registered with ``add_package`` and the whole set is fetched
    by ``refresh``. After that the cache is read-only for the rest of the
    group's processing. Filename and subpath comparisons ignore case.
    """

    def __init__(self, package_ids: Iterable[int] = ()) -> None:
        self._package_ids: list[int] = []
        self._by_package: dict[int, list[ArchiveEntry]] = {}
        self._by_name: dict[tuple[int, str], list[ArchiveEntry]] = {}
        self._populated = False
        for package_id in package_ids:
            self.add_package(package_id)

    @property
    def package_ids(self) -> list[int]:
        return list(self._package_ids)

    @property
    def is_populated(self) -> bool:
        return self._populated

    def add_package(self, package_id: int) -> None:
        if self._populated:
            raise RuntimeError("Cannot add packages to a catalog cache after it was refreshed")
        if package_id not in self._package_ids:
            self._package_ids.append(package_id)

    async def refresh(self, catalog: ArchiveCatalog) -> int:
        """Fetch entries for all registered packages. Returns the entry count."""
        entries = await catalog.fetch_entries(self._package_ids) if self._package_ids else []
        self.populate(entries)
        return len(entries)

    def populate(self, entries: Iterable[ArchiveEntry]) -> None:
        """Load entries directly (used by ``refresh``)."""
        wanted = set(self._package_ids)
        by_package: dict[int, list[ArchiveEntry]] = defaultdict(list)
        by_name: dict[tuple[int, str], list[ArchiveEntry]] = defaultdict(list)
        skipped = 0
        for entry in entries:
            if entry.package_id not in wanted:
                skipped += 1
                continue
            by_package[entry.package_id].append(entry)
            by_name[(entry.package_id, entry.filename.casefold())].append(entry)
        if skipped:
            logger.debug("Ignored %d catalog entries for unregistered packages", skipped)
        self._by_package = dict(by_package)
        self._by_name = dict(by_name)
        self._populated = True

    def find_files(
        self,
        pattern: str = "*",
        subpath: str = "",
        package_id: int | None = None,
        *,
        recurse: bool = True,
    ) -> list[ArchiveEntry]:
        """Return cached entries matching a filename pattern and subpath.

        With ``recurse=False`` only entries directly in ``subpath`` match;
        otherwise entries anywhere below it do. An empty subpath with
        ``recurse=True`` matches the whole package.
        """
        if not self._populated:
            raise RuntimeError("Catalog cache must be refreshed before it is queried")

        if _WILDCARD_CHARS.isdisjoint(pattern) and package_id is not None:
            return self.find_exact(pattern, subpath, package_id, recurse=recurse)

        if package_id is None:
            pool = [entry for entries in self._by_package.values() for entry in entries]
        else:
            pool = self._by_package.get(package_id, [])
        folded = pattern.casefold()
        name_matches = [
            entry for entry in pool if fnmatch.fnmatchcase(entry.filename.casefold(), folded)
        ]
        return _filter_subpath(name_matches, subpath, recurse)

    def find_exact(
        self,
        filename: str,
        subpath: str,
        package_id: int,
        *,
        recurse: bool = False,
    ) -> list[ArchiveEntry]:
        """Return entries whose filename equals ``filename``, ignoring case.

        Glob characters in ``filename`` are matched literally.
        """
        if not self._populated:
            raise RuntimeError("Catalog cache must be refreshed before it is queried")
        name_matches = self._by_name.get((package_id, filename.casefold()), [])
        return _filter_subpath(name_matches, subpath, recurse)


def _filter_subpath(
    entries: Iterable[ArchiveEntry], subpath: str, recurse: bool
) -> list[ArchiveEntry]:
    wanted = normalize_subpath(subpath).casefold()
    return [
        entry
        for entry in entries
        if _subpath_matches(normalize_subpath(entry.subpath).casefold(), wanted, recurse)
    ]


def _subpath_matches(entry_subpath: str, wanted: str, recurse: bool) -> bool:
    if not recurse:
        return entry_subpath == wanted
    if not wanted:
        return True
    return entry_subpath == wanted or entry_subpath.startswith(wanted + "/")
