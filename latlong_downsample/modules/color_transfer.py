import numpy as np


# sRGB transfer constants
K0 = 0.03928
ALPHA = 0.055
PHI = 12.92
GAMMA = 2.4


def srgb(v):
    """Encode linear-light values with the sRGB transfer curve.

    No clamping is applied: values above 1 encode above 1 and values below 0
    stay on the linear segment.
    """
    v = np.asarray(v, dtype=np.float64)
    curve = (1.0 + ALPHA) * np.power(np.maximum(v, 0.0), 1.0 / GAMMA) - ALPHA
    return np.where(v <= K0 / PHI, v * PHI, curve)


def linear(v):
    """Decode sRGB encoded values to linear light."""
    v = np.asarray(v, dtype=np.float64)
    curve = np.power(np.maximum(v + ALPHA, 0.0) / (1.0 + ALPHA), GAMMA)
    return np.where(v <= K0, v / PHI, curve)


# byte value -> linear float, shared by every decode
_LINEAR_LUT = linear(np.arange(256, dtype=np.float64) / 255.0).astype(np.float32)


def decode_srgb_bytes(data: np.ndarray) -> np.ndarray:
    """Convert uint8 sRGB samples to float32 linear light."""
    return _LINEAR_LUT[np.asarray(data, dtype=np.uint8)]


def encode_srgb_bytes(pixels: np.ndarray) -> np.ndarray:
    """Convert linear-light floats to uint8 sRGB samples.

    Each component becomes trunc(255 * srgb(c)). Out-of-range components are
    not clamped; the integer result is stored modulo 256 like a C byte store.
    """
    encoded = np.trunc(255.0 * srgb(pixels))
    return np.mod(encoded.astype(np.int64), 256).astype(np.uint8)


def srgb_to_linear_float(image: np.ndarray) -> np.ndarray:
    """Float sRGB image in [0,1] -> float32 linear light."""
    return linear(image).astype(np.float32)


def linear_to_srgb_float(image: np.ndarray) -> np.ndarray:
    """Float linear-light image -> float32 sRGB clipped to [0,1]."""
    return np.clip(srgb(image), 0.0, 1.0).astype(np.float32)
