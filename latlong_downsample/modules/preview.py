import numpy as np
from PIL import Image

from .color_transfer import linear_to_srgb_float
from .pixel_buffer import EquirectangularImage


def save_png_preview(image: EquirectangularImage, path: str, max_width: int = -1) -> str:
    """Save an sRGB PNG copy of a linear-light image.

    Args:
        image: Image to export
        path: Destination .png path
        max_width: Larger images are shrunk to this width (Lanczos). -1 keeps the size.

    Returns:
        The path written
    """
    image_np = (linear_to_srgb_float(image.buffer) * 255.0 + 0.5).astype(np.uint8)
    pil_image = Image.fromarray(image_np)

    if max_width > 0 and pil_image.size[0] > max_width:
        new_size = (max_width, max(1, int(round(max_width * pil_image.size[1] / pil_image.size[0]))))
        pil_image = pil_image.resize(new_size, resample=Image.Resampling.LANCZOS)

    pil_image.save(path, format="PNG")
    return path
