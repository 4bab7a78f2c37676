"""Entity partitioning for the registration phase."""

from __future__ import annotations


def partition_entities(count: int, parts: int) -> list[tuple[int, int]]:
    """Split ``count`` entities into ``parts`` contiguous ranges.

    Range ``i`` is ``[floor(i * count / parts), floor((i + 1) * count / parts))``,
    so sizes differ by at most one and concatenating the ranges restores the
    original order.

    Parameters
    ----------
    count : int
        Number of entities
    parts : int
        Number of ranges (workers)

    Returns
    -------
    list[tuple[int, int]]
        ``(first, last)`` half-open index ranges, possibly empty

    Example
    -------
    >>> partition_entities(5, 2)
    [(0, 2), (2, 5)]
    """
    if parts < 1:
        raise ValueError(f"parts must be >= 1, got {parts}")
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    bounds = [(i * count) // parts for i in range(parts + 1)]
    return [(bounds[i], bounds[i + 1]) for i in range(parts)]


__all__ = ["partition_entities"]
