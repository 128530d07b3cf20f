from typing import Iterable, List, Tuple


def region_to_path(region: Iterable[Tuple[int, int]]) -> str:
    """Turn a region into an SVG path string ``M x y L x y ... Z``.

    Points are ordered by row, then column, so the same pixel set always gives
    the same path whatever order the flood fill visited it in. The result is a
    point-to-point polyline across the region, not an outline of it. That is
    the intended coarse approximation.

    An empty region gives an empty string.
    """
    points = sorted(region, key=lambda p: (p[1], p[0]))
    if not points:
        return ""

    x0, y0 = points[0]
    parts: List[str] = [f"M {x0} {y0}"]
    parts.extend(f"L {x} {y}" for x, y in points[1:])
    parts.append("Z")
    return " ".join(parts)
