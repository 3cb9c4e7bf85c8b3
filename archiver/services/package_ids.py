"""Parsing of package ID lists such as ``880-885,892,900-``."""

from __future__ import annotations

from dataclasses import dataclass

from archiver.exceptions import InvalidPackageIdError


@dataclass(frozen=True)
class IdRange:
    """Inclusive package ID range; ``end`` of None means open-ended."""

    start: int
    end: int | None

    def __contains__(self, package_id: object) -> bool:
        if not isinstance(package_id, int):
            return False
        if package_id < self.start:
            return False
        return self.end is None or package_id <= self.end

    def __str__(self) -> str:
        if self.end is None:
            return f"{self.start}-"
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


def _parse_item(item: str) -> IdRange | None:
    dash_index = item.find("-")
    try:
        if dash_index == 0:
            # "-500" means everything up to 500
            if len(item) == 1:
                return None
            return IdRange(0, int(item[1:]))
        if dash_index > 0:
            start = int(item[:dash_index])
            if dash_index == len(item) - 1:
                return IdRange(start, None)
            return IdRange(start, int(item[dash_index + 1 :]))
        value = int(item)
    except ValueError:
        return None
    return IdRange(value, value)


def parse_package_id_list(text: str) -> list[IdRange]:
    """Parse a comma-separated list of package IDs and ID ranges.

    ``*`` selects every package and yields an empty list. Duplicate ranges are
    collapsed, order is preserved.

    Raises InvalidPackageIdError listing every item that is not an ID or range,
    and ValueError when the list is blank.
    """
    stripped = text.strip()
    if not stripped:
        raise ValueError("Package ID list is empty; should contain integers or '*'")
    if stripped.startswith("*"):
        return []

    ranges: list[IdRange] = []
    invalid: list[str] = []
    for raw_item in stripped.split(","):
        item = raw_item.strip()
        if not item:
            continue
        id_range = _parse_item(item)
        if id_range is None:
            invalid.append(item)
        elif id_range not in ranges:
            ranges.append(id_range)

    if invalid:
        raise InvalidPackageIdError(invalid)
    if not ranges:
        raise ValueError("Package ID list is empty; should contain integers or '*'")
    return ranges
