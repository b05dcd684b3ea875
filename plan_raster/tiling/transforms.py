"""
Coordinate transformation between tile-local and global image space.

Every box carries its convention explicitly; these functions never infer
whether a box is normalized or in pixels.
"""

from .models import BBox, BoxConvention, DetectedRegion, TileDescriptor


def to_global(tile: TileDescriptor, bbox: BBox) -> BBox:
    """
    Lift a tile-local bounding box into global image coordinates.

    Args:
        tile: Tile the box was detected in
        bbox: Box in PIXEL or NORMALIZED convention

    Returns:
        Box in GLOBAL convention

    Raises:
        ValueError: If the box is already global
    """
    if bbox.convention == BoxConvention.PIXEL:
        return BBox(
            x=bbox.x + tile.x,
            y=bbox.y + tile.y,
            width=bbox.width,
            height=bbox.height,
            convention=BoxConvention.GLOBAL,
        )
    if bbox.convention == BoxConvention.NORMALIZED:
        return BBox(
            x=tile.x + bbox.x * tile.width,
            y=tile.y + bbox.y * tile.height,
            width=bbox.width * tile.width,
            height=bbox.height * tile.height,
            convention=BoxConvention.GLOBAL,
        )
    raise ValueError("bbox is already in global coordinates")


def to_local(
    tile: TileDescriptor,
    bbox: BBox,
    convention: BoxConvention = BoxConvention.PIXEL,
) -> BBox:
    """
    Project a global bounding box into a tile's local coordinates.

    Args:
        tile: Target tile
        bbox: Box in GLOBAL convention
        convention: PIXEL or NORMALIZED output convention

    Returns:
        Box in the requested local convention
    """
    if bbox.convention != BoxConvention.GLOBAL:
        raise ValueError(f"expected a global bbox, got {bbox.convention.value}")

    if convention == BoxConvention.PIXEL:
        return BBox(
            x=bbox.x - tile.x,
            y=bbox.y - tile.y,
            width=bbox.width,
            height=bbox.height,
            convention=BoxConvention.PIXEL,
        )
    if convention == BoxConvention.NORMALIZED:
        return BBox(
            x=(bbox.x - tile.x) / tile.width,
            y=(bbox.y - tile.y) / tile.height,
            width=bbox.width / tile.width,
            height=bbox.height / tile.height,
            convention=BoxConvention.NORMALIZED,
        )
    raise ValueError("local convention must be PIXEL or NORMALIZED")


def clip_to_image(bbox: BBox, width: int, height: int) -> BBox:
    """
    Clamp a global box to the image rectangle [0, width] x [0, height].

    A box entirely outside the image collapses to a zero-area box on the
    nearest image edge, so its origin may equal ``width`` or ``height``.
    Callers drop such boxes by area.
    """
    x1 = min(max(bbox.x, 0.0), float(width))
    y1 = min(max(bbox.y, 0.0), float(height))
    x2 = min(max(bbox.x2, 0.0), float(width))
    y2 = min(max(bbox.y2, 0.0), float(height))
    return BBox(
        x=x1,
        y=y1,
        width=max(0.0, x2 - x1),
        height=max(0.0, y2 - y1),
        convention=bbox.convention,
    )


def region_to_global(
    region: DetectedRegion,
    tile: TileDescriptor,
    image_width: int,
    image_height: int,
) -> DetectedRegion:
    """
    Lift a backend detection to global coordinates, clipped to the image.

    The tile index always comes from the tile the call was made for, never
    from the backend's own bookkeeping.
    """
    global_bbox = clip_to_image(to_global(tile, region.bbox), image_width, image_height)
    return DetectedRegion(
        bbox=global_bbox,
        confidence=min(1.0, max(0.0, float(region.confidence))),
        tile_index=tile.index,
        text=region.text,
        label=region.label,
    )
