"""Turn the nested table of contents into NCX navigation points."""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field

from orly.models.book import TocElement, to_xhtml

# NCX playOrder is 1-based
ORDER_BASE = 1

_NCNAME_START = re.compile(r"^[A-Za-z_]")
_NCNAME_INVALID = re.compile(r"[^\w.\-]")


@dataclass
class NavPoint:
    """One entry of the navigation map."""

    id: str
    order: int
    label: str
    url: str
    children: list["NavPoint"] = field(default_factory=list)


@dataclass
class NavMap:
    """Flattened table of contents."""

    points: list[NavPoint]
    depth: int

    def __iter__(self) -> Iterator[NavPoint]:
        return iter_nav_points(self.points)

    def __len__(self) -> int:
        return sum(1 for _ in self)


def iter_nav_points(points: list[NavPoint]) -> Iterator[NavPoint]:
    """Pre-order walk over a navigation tree."""
    for point in points:
        yield point
        yield from iter_nav_points(point.children)


class _IdAllocator:
    """Keeps nav point ids valid and unique within one document."""

    def __init__(self) -> None:
        self.used: set[str] = set()

    def allocate(self, candidate: str, order: int) -> str:
        candidate = _NCNAME_INVALID.sub("_", candidate)
        if not candidate:
            candidate = f"navpoint-{order}"
        elif not _NCNAME_START.match(candidate):
            candidate = f"np-{candidate}"
        if candidate in self.used:
            candidate = f"{candidate}-{order}"
        self.used.add(candidate)
        return candidate


def flatten_toc(elements: list[TocElement], base: int = ORDER_BASE) -> NavMap:
    """Assign pre-order play orders and compute the tree depth.

    Every element yields exactly one nav point, parents before children. The
    reported depth is the maximum of the declared depth and the nesting level
    (top level = 1) over all nodes.
    """
    ids = _IdAllocator()

    def walk(items: list[TocElement], order: int, level: int) -> tuple[list[NavPoint], int, int]:
        points = []
        depth = 0
        for element in items:
            # fragment wins over the element id when present
            point = NavPoint(
                id=ids.allocate(element.fragment or element.id, order),
                order=order,
                label=element.label,
                url=to_xhtml(element.href),
            )
            children, order, child_depth = walk(element.children, order + 1, level + 1)
            point.children = children
            depth = max(depth, element.depth, level, child_depth)
            points.append(point)
        return points, order, depth

    points, _, depth = walk(elements, base, 1)
    return NavMap(points=points, depth=depth)
