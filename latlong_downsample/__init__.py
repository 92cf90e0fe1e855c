from .nodes import EquirectangularDownsample


NODE_CLASS_MAPPINGS = {
    "Equirectangular Downsample": EquirectangularDownsample,
}

NODE_DISPLAY_NAME_MAPPINGS = {
    "Equirectangular Downsample": "Equirectangular Downsample (Latitude-Aware)",
}

__all__ = ['NODE_CLASS_MAPPINGS', 'NODE_DISPLAY_NAME_MAPPINGS']
