import torch
import numpy as np
from typing import Tuple

from .modules.color_transfer import linear_to_srgb_float, srgb_to_linear_float
from .modules.equirectangular_resampler import (
    EquirectangularResampler,
    ResampleMethod,
    check_geometry,
)


_METHODS = [m.value for m in (ResampleMethod.GEODESIC, ResampleMethod.BOX, ResampleMethod.NEAREST)]


class EquirectangularDownsample:
    """ComfyUI node for latitude-aware downsampling of equirectangular images"""
    DESCRIPTION = "Downsample an equirectangular (360°) image in linear light with pole-aware filtering."

    @classmethod
    def INPUT_TYPES(s):
        return {
            "required": {
                "image": ("IMAGE", {"tooltip": "Equirectangular input image tensor (B,H,W,C) in [0,1], sRGB encoded."}),
            },
            "optional": {
                "output_width": ("INT", {"default": 2048, "min": 1, "max": 16384, "step": 1, "tooltip": "Target width in pixels. Must not exceed the input width."}),
                "output_height": ("INT", {"default": 1024, "min": 1, "max": 8192, "step": 1, "tooltip": "Target height in pixels. Must not exceed the input height."}),
                "method": (_METHODS, {"default": "geodesic", "tooltip": "geodesic: Gaussian on the sphere (best near poles); box: latitude-weighted box filter; nearest: no filtering."}),
                "backend": (["auto", "cpu", "gpu"], {"default": "auto", "tooltip": "Processing backend for the geodesic filter. Auto uses GPU if available."}),
            }
        }

    RETURN_TYPES = ("IMAGE",)
    RETURN_NAMES = ("downsampled_image",)
    FUNCTION = "downsample"
    CATEGORY = "LatLong"

    def downsample(self,
                   image: torch.Tensor,
                   output_width: int = 2048,
                   output_height: int = 1024,
                   method: str = "geodesic",
                   backend: str = "auto") -> Tuple[torch.Tensor]:

        if image.ndim != 4 or image.shape[3] < 3:
            raise ValueError(f"Expected IMAGE (B,H,W,C) with C>=3, got shape {tuple(image.shape)}")

        batch_size, in_height, in_width = image.shape[:3]
        check_geometry(in_width, in_height, output_width, output_height)

        processed_images = []
        for i in range(batch_size):
            img_numpy = image[i].cpu().numpy()
            if img_numpy.dtype != np.float32:
                img_numpy = img_numpy.astype(np.float32)

            # Filter color in linear light
            rgb_linear = srgb_to_linear_float(img_numpy[..., :3])
            out_linear = EquirectangularResampler.resample_array(
                rgb_linear, output_width, output_height, method=method, backend=backend
            )
            processed_img = linear_to_srgb_float(out_linear)

            # Alpha and other extra channels are already linear
            if img_numpy.shape[2] > 3:
                extra = EquirectangularResampler.resample_array(
                    np.ascontiguousarray(img_numpy[..., 3:]), output_width, output_height,
                    method=method, backend=backend
                )
                processed_img = np.concatenate([processed_img, np.clip(extra, 0.0, 1.0)], axis=-1)

            processed_images.append(torch.from_numpy(processed_img.astype(np.float32)))

        result = torch.stack(processed_images, dim=0)
        return (result,)
