"""Application-level exception types.

Convention:
- ``ArchiverError``: base class for failures raised by the archive manager
  itself. The runner catches it at the run boundary, reports it through the
  run reporter and turns it into a failed run.
- ``ValueError``: for *input* validation errors that are reported to the
  operator before any work starts (bad ID lists, bad dates, bad settings).
"""

from __future__ import annotations


class ArchiverError(Exception):
    """Base class for archive manager errors."""


class CatalogQueryError(ArchiverError):
    """Raised when the remote catalog cannot be queried or returns bad data.

    Catalog queries are attempted once per run; the next scheduled run is
    the retry.
    """


class InvalidPackageIdError(ValueError):
    """Raised when a package ID list contains items that are not IDs or ID ranges."""

    def __init__(self, items: list[str]) -> None:
        self.items = items
        joined = ", ".join(repr(item) for item in items)
        super().__init__(f"Values are not integers or ranges of integers: {joined}")
