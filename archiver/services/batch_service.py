"""Batch planning: group packages so each catalog query stays bounded."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from archiver.services.candidate_filter import resolve_package_dir

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

DEFAULT_MAX_FILES = 5000
DEFAULT_MAX_PACKAGES = 30


def count_package_files(local_path: str, share_path: str) -> int:
    """Count all files below a package directory; 0 if neither path exists."""
    package_dir = resolve_package_dir(local_path, share_path)
    if package_dir is None:
        return 0
    return sum(len(filenames) for _root, _dirs, filenames in os.walk(package_dir))


def plan_batches(
    file_counts: Iterable[tuple[int, int]],
    max_files: int = DEFAULT_MAX_FILES,
    max_packages: int = DEFAULT_MAX_PACKAGES,
) -> list[list[int]]:
    """Group ``(package_id, file_count)`` pairs, preserving order.

    A package joins the current group unless that would push the group's file
    total over ``max_files`` or the group already holds ``max_packages``
    packages; then the group is closed and the package starts a new one. A
    package that alone exceeds ``max_files`` therefore forms its own group.
    """
    if max_files < 1 or max_packages < 1:
        raise ValueError("max_files and max_packages must be positive")

    groups: list[list[int]] = []
    current: list[int] = []
    running_count = 0

    for package_id, file_count in file_counts:
        if running_count + file_count > max_files or len(current) >= max_packages:
            if current:
                groups.append(current)
            current = [package_id]
            running_count = file_count
        else:
            current.append(package_id)
            running_count += file_count

    if current:
        groups.append(current)
    return groups


def chunk_ids(package_ids: Sequence[int], size: int) -> list[list[int]]:
    """Split IDs into consecutive groups of at most ``size``."""
    if size < 1:
        raise ValueError("size must be positive")
    return [list(package_ids[i : i + size]) for i in range(0, len(package_ids), size)]
