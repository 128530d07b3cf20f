"""Foreground region extraction from an alpha mask.

Seeds are sampled on a coarse grid and grown with an iterative 4-connected
flood fill. Two limits keep the work bounded on large masks:

* a region stops growing at ``max_pixels`` pixels, even when its connected
  component is larger; the rest of the component may be picked up by later
  seeds as separate regions, or not at all;
* detail smaller than the sampling stride can be missed entirely when no
  seed lands on it.

Both are accepted losses for a coarse tracer. Regions smaller than
``min_pixels`` are dropped as noise.
"""

from typing import List, Sequence, Tuple

from common.config import ALPHA_THRESHOLD, MAX_REGION_PIXELS, MIN_REGION_PIXELS, SAMPLE_STRIDE

Point = Tuple[int, int]
Region = List[Point]


def flood_fill(
    alpha: Sequence[int],
    width: int,
    height: int,
    start_x: int,
    start_y: int,
    claimed: bytearray,
    threshold: int = ALPHA_THRESHOLD,
    max_pixels: int = MAX_REGION_PIXELS,
) -> Region:
    """Grow one region from (start_x, start_y), marking its pixels in ``claimed``."""
    region: Region = []
    stack = [(start_x, start_y)]

    while stack:
        x, y = stack.pop()
        index = y * width + x
        if claimed[index] or alpha[index] <= threshold:
            continue

        claimed[index] = 1
        region.append((x, y))
        if len(region) >= max_pixels:
            break

        if x + 1 < width:
            stack.append((x + 1, y))
        if x > 0:
            stack.append((x - 1, y))
        if y + 1 < height:
            stack.append((x, y + 1))
        if y > 0:
            stack.append((x, y - 1))

    return region


def extract_regions(
    alpha: Sequence[int],
    width: int,
    height: int,
    threshold: int = ALPHA_THRESHOLD,
    stride: int = SAMPLE_STRIDE,
    max_pixels: int = MAX_REGION_PIXELS,
    min_pixels: int = MIN_REGION_PIXELS,
) -> List[Region]:
    """Partition above-threshold pixels of a row-major alpha buffer into regions.

    Args:
        alpha: one value (0-255) per pixel, row-major, ``width * height`` long
        width: buffer width in pixels
        height: buffer height in pixels
        threshold: pixels with alpha strictly above this are foreground
        stride: seed sampling step in both axes
        max_pixels: growth cap per region
        min_pixels: regions with fewer pixels are discarded

    Returns:
        Regions in seed order. No pixel appears in two regions.
    """
    if len(alpha) != width * height:
        raise ValueError(f"alpha buffer has {len(alpha)} values, expected {width * height}")
    if stride < 1:
        raise ValueError("stride must be at least 1")

    claimed = bytearray(width * height)
    regions: List[Region] = []

    for y in range(0, height, stride):
        for x in range(0, width, stride):
            index = y * width + x
            if claimed[index] or alpha[index] <= threshold:
                continue
            region = flood_fill(alpha, width, height, x, y, claimed, threshold, max_pixels)
            # Discarded pixels stay claimed so they never seed again.
            if len(region) >= min_pixels:
                regions.append(region)

    return regions
