from .types import ResizeBox


def resize_dimensions(
    orig_width: int,
    orig_height: int,
    dest_width: int,
    dest_height: int,
    crop: bool = False,
) -> ResizeBox | None:
    """
    Work out how an image of orig size maps onto a requested box.

    Without crop the image is scaled to fit inside the box keeping its aspect
    ratio. With crop the output is exactly the box (capped to the original)
    and a centred region of the source is used. Images are never upscaled.

    Returns None when the output would equal the original size.
    """
    if orig_width <= 0 or orig_height <= 0:
        raise ValueError("Original dimensions must be positive")
    if dest_width <= 0 and dest_height <= 0:
        raise ValueError("At least one destination dimension must be positive")

    if crop:
        new_width = min(dest_width, orig_width) if dest_width > 0 else orig_width
        new_height = min(dest_height, orig_height) if dest_height > 0 else orig_height

        aspect = new_width / new_height
        src_width = orig_width
        src_height = round(src_width / aspect)
        if src_height > orig_height:
            src_height = orig_height
            src_width = round(src_height * aspect)

        src_x = (orig_width - src_width) // 2
        src_y = (orig_height - src_height) // 2
    else:
        width_ratio = dest_width / orig_width if dest_width > 0 else 1.0
        height_ratio = dest_height / orig_height if dest_height > 0 else 1.0
        ratio = min(width_ratio, height_ratio, 1.0)

        new_width = max(1, round(orig_width * ratio))
        new_height = max(1, round(orig_height * ratio))
        src_x, src_y = 0, 0
        src_width, src_height = orig_width, orig_height

    if new_width == orig_width and new_height == orig_height:
        return None

    return ResizeBox(
        src_x=src_x,
        src_y=src_y,
        src_width=src_width,
        src_height=src_height,
        dst_width=new_width,
        dst_height=new_height,
    )
