from typing import Optional, Tuple


def normalize_selection(selection: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
    """Flip a rectangle dragged up or left so width and height are non-negative."""
    x, y, width, height = selection
    if width < 0:
        x, width = x + width, -width
    if height < 0:
        y, height = y + height, -height
    return x, y, width, height


def map_selection_to_pixels(
    selection: Tuple[int, int, int, int],
    device_pixel_ratio: float,
    image_size: Tuple[int, int],
) -> Optional[Tuple[int, int, int, int]]:
    """
    Map a logical (x, y, width, height) selection onto bitmap pixels.

    Returns a Pillow crop box (left, top, right, bottom) clamped to the bitmap,
    or None when nothing of the selection lands inside it.
    """
    x, y, width, height = normalize_selection(selection)
    dpr = device_pixel_ratio if device_pixel_ratio > 0 else 1.0
    image_width, image_height = image_size

    left = max(0, min(int(x * dpr), image_width))
    top = max(0, min(int(y * dpr), image_height))
    right = max(0, min(int(x * dpr) + int(width * dpr), image_width))
    bottom = max(0, min(int(y * dpr) + int(height * dpr), image_height))

    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom
