import math
import numpy as np
import torch
from enum import Enum
from functools import lru_cache
from typing import Iterator, Optional, Tuple

from .pixel_buffer import EquirectangularImage
from .spherical_projection import to_sphere, to_uv, texel_to_pixel
from .vector_math import cross, normalize, orthogonal


OUTPUT_PATH = "output.ppm"

# Bounds the kernel growth near the poles where 1/sin(v*pi) diverges
MAX_STRETCH = 8.0

DEFAULT_BAND_ROWS = 64

# Upper bound on gathered sample values held at once by the geodesic filter
MAX_GATHER_ELEMENTS = 1 << 22


class GeometryError(ValueError):
    """Requested output does not fit inside the input image."""


class ResampleMethod(str, Enum):
    NEAREST = "nearest"
    BOX = "box"
    GEODESIC = "geodesic"


def gauss(x, y, r):
    """Gaussian kernel weight for tangent-plane offset (x, y) of a radius r kernel.

    sigma is r/3 so the kernel falls to ~1% at its edge. A zero radius kernel
    has a single tap of weight 1.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if r == 0:
        return np.ones(np.broadcast(x, y).shape)[()]
    sigma = r / 3.0
    two_sigma2 = 2.0 * sigma * sigma
    return (np.exp(-(x * x + y * y) / two_sigma2) / (np.pi * two_sigma2))[()]


class EquirectangularResampler:
    """Downsampling strategies for equirectangular images.

    Every strategy takes the input pixels as an (H, W, C) array, never writes
    to it, and yields finished output rows as (row_start, band) pairs so each
    output row is produced exactly once.
    """

    @staticmethod
    def calculate_column_chunk(out_width: int, extent: int, channels: int = 3,
                               max_elements: int = MAX_GATHER_ELEMENTS) -> int:
        """Number of output columns whose geodesic taps fit in one gather.

        Args:
            out_width: Output row length
            extent: Kernel half-size in taps
            channels: Channels per sample (directions need 3 regardless)
            max_elements: Budget of gathered values per chunk

        Returns:
            Column count in [1, out_width]
        """
        taps = (2 * extent + 1) ** 2
        per_column = taps * max(channels, 3)
        return int(max(1, min(out_width, max_elements // per_column)))

    @staticmethod
    def filter_radius(in_width: int, in_height: int, out_width: int, out_height: int) -> int:
        """Half of the larger axis downscale ratio, shared by all output pixels."""
        return int(math.floor(max(in_width / out_width, in_height / out_height) / 2.0))

    @staticmethod
    def angular_step(in_width: int, in_height: int) -> float:
        """Tangent-plane step that roughly spans one source pixel."""
        return 1.0 / max(in_width / 2.0, in_height)

    @staticmethod
    def latitude_stretch(v: float) -> float:
        """Horizontal stretch of the projection at colatitude v, clamped to MAX_STRETCH."""
        s = math.sin(v * math.pi)
        if s <= 1.0 / MAX_STRETCH:
            return MAX_STRETCH
        return 1.0 / s

    @staticmethod
    def kernel_extent(radius: int, stretch: float) -> int:
        return int(math.floor(radius * stretch + 0.5))

    @staticmethod
    @lru_cache(maxsize=64)
    def kernel_taps(extent: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Offsets (ai, aj) covering [-extent, extent]^2 and their gauss weights."""
        span = np.arange(-extent, extent + 1, dtype=np.float64)
        aj, ai = np.meshgrid(span, span, indexing='ij')
        ai = ai.ravel()
        aj = aj.ravel()
        weights = np.asarray(gauss(ai, aj, extent), dtype=np.float64)
        for arr in (ai, aj, weights):
            arr.flags.writeable = False
        return ai, aj, weights

    @staticmethod
    def tangent_frame(center: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Orthonormal basis of the tangent plane at each unit direction."""
        orth0 = orthogonal(center)
        orth1 = cross(orth0, center)
        return orth0, orth1

    @staticmethod
    def nearest_bands(pixels: np.ndarray, out_width: int, out_height: int,
                      band_rows: int = DEFAULT_BAND_ROWS) -> Iterator[Tuple[int, np.ndarray]]:
        in_height, in_width = pixels.shape[:2]
        cols = (np.arange(out_width, dtype=np.int64) * in_width) // out_width

        for row_start in range(0, out_height, band_rows):
            row_end = min(row_start + band_rows, out_height)
            rows = (np.arange(row_start, row_end, dtype=np.int64) * in_height) // out_height
            yield row_start, pixels[rows[:, None], cols[None, :]].astype(np.float32)

    @staticmethod
    def box_row_weights(in_height: int, row_start: int, row_end: int) -> np.ndarray:
        """sin(colatitude) of each source row center, proportional to its solid angle."""
        rows = np.arange(row_start, row_end, dtype=np.float64)
        return np.sin(np.pi * (rows + 0.5) / in_height)

    @classmethod
    def box_weight_total(cls, in_width: int, in_height: int, out_width: int, out_height: int,
                         oi: int, oj: int) -> float:
        """Sum of box filter weights over the source rectangle of output pixel (oi, oj)."""
        ii0 = in_width * oi // out_width
        ii1 = in_width * (oi + 1) // out_width
        ij0 = in_height * oj // out_height
        ij1 = in_height * (oj + 1) // out_height
        return float(cls.box_row_weights(in_height, ij0, ij1).sum() * (ii1 - ii0))

    @classmethod
    def box_bands(cls, pixels: np.ndarray, out_width: int, out_height: int,
                  band_rows: int = DEFAULT_BAND_ROWS) -> Iterator[Tuple[int, np.ndarray]]:
        in_height, in_width, channels = pixels.shape

        # Column rectangles tile the row: [ii0(oi), ii0(oi+1)) with ii1 of the last = in_width
        col_starts = (np.arange(out_width, dtype=np.int64) * in_width) // out_width
        col_counts = np.diff(np.append(col_starts, in_width))

        for row_start in range(0, out_height, band_rows):
            row_end = min(row_start + band_rows, out_height)
            band = np.empty((row_end - row_start, out_width, channels), dtype=np.float32)

            for k, oj in enumerate(range(row_start, row_end)):
                ij0 = in_height * oj // out_height
                ij1 = in_height * (oj + 1) // out_height
                weights = cls.box_row_weights(in_height, ij0, ij1)

                # Weight rows first, then sum each column rectangle
                weighted = np.tensordot(weights, pixels[ij0:ij1], axes=(0, 0))
                sums = np.add.reduceat(weighted, col_starts, axis=0)
                band[k] = sums / (weights.sum() * col_counts)[:, None]

            yield row_start, band

    @classmethod
    def geodesic_row_footprint(cls, in_width: int, in_height: int, out_width: int, out_height: int,
                               oj: int, columns: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Source pixels and kernel weights for output pixels (columns, oj).

        Returns:
            Tuple (ii, ij, weights): ii and ij are (len(columns), taps) integer
            source indices, weights is the (taps,) kernel shared by the row.
        """
        radius = cls.filter_radius(in_width, in_height, out_width, out_height)
        delta = cls.angular_step(in_width, in_height)
        v = oj / out_height
        extent = cls.kernel_extent(radius, cls.latitude_stretch(v))
        ai, aj, weights = cls.kernel_taps(extent)

        columns = np.asarray(columns, dtype=np.float64)
        center = to_sphere(columns / out_width, v)
        orth0, orth1 = cls.tangent_frame(center)

        # (columns, taps, 3) tangent-plane displacements
        displacement = ((delta * ai)[None, :, None] * orth0[:, None, :]
                        + (delta * aj)[None, :, None] * orth1[:, None, :])
        directions = normalize(center[:, None, :] + displacement)

        u, tv = to_uv(directions)
        ii, ij = texel_to_pixel(u, tv, in_width, in_height)
        return ii, ij, weights

    @classmethod
    def geodesic_footprint(cls, in_width: int, in_height: int, out_width: int, out_height: int,
                           oi: int, oj: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Source indices (ii, ij) and weights sampled by a single output pixel."""
        ii, ij, weights = cls.geodesic_row_footprint(
            in_width, in_height, out_width, out_height, oj, np.arange(oi, oi + 1)
        )
        return ii[0], ij[0], weights

    @classmethod
    def geodesic_bands(cls, pixels: np.ndarray, out_width: int, out_height: int,
                       max_elements: int = MAX_GATHER_ELEMENTS) -> Iterator[Tuple[int, np.ndarray]]:
        in_height, in_width, channels = pixels.shape
        radius = cls.filter_radius(in_width, in_height, out_width, out_height)

        for oj in range(out_height):
            extent = cls.kernel_extent(radius, cls.latitude_stretch(oj / out_height))
            chunk = cls.calculate_column_chunk(out_width, extent, channels, max_elements)
            row = np.empty((1, out_width, channels), dtype=np.float32)

            for col_start in range(0, out_width, chunk):
                col_end = min(col_start + chunk, out_width)
                ii, ij, weights = cls.geodesic_row_footprint(
                    in_width, in_height, out_width, out_height, oj,
                    np.arange(col_start, col_end)
                )
                samples = pixels[ij, ii]  # (columns, taps, C)
                acc = np.tensordot(samples, weights, axes=([1], [0]))
                row[0, col_start:col_end] = acc / weights.sum()

            yield oj, row

    @staticmethod
    def _torch_to_sphere(u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
        theta = v * math.pi
        phi = (u - 0.5) * (2.0 * math.pi)
        sin_theta = torch.sin(theta)
        return torch.stack([sin_theta * torch.cos(phi),
                            torch.cos(theta).expand_as(phi),
                            sin_theta * torch.sin(phi)], dim=-1)

    @staticmethod
    def _torch_orthogonal(v: torch.Tensor) -> torch.Tensor:
        x, y, z = v.unbind(-1)
        ax, ay, az = x.abs(), y.abs(), z.abs()
        zero = torch.zeros_like(x)

        use_x = ((ax < ay) & (ax < az)).unsqueeze(-1)
        use_y = ((ax >= ay) & (ay < az)).unsqueeze(-1)
        from_x = torch.stack([zero, -z, y], dim=-1)
        from_y = torch.stack([z, zero, -x], dim=-1)
        from_z = torch.stack([-y, x, zero], dim=-1)

        out = torch.where(use_x, from_x, torch.where(use_y, from_y, from_z))
        return out / out.norm(dim=-1, keepdim=True)

    @classmethod
    def torch_geodesic_gaussian(cls,
                                image: torch.Tensor,
                                out_width: int,
                                out_height: int) -> torch.Tensor:
        """Geodesic Gaussian downsample of an (H, W, C) tensor on its own device.

        Geometry runs in float64 on CPU and float32 elsewhere.
        """
        device = image.device
        dtype = torch.float64 if device.type == 'cpu' else torch.float32
        in_height, in_width, channels = image.shape
        src = image.to(dtype)

        radius = cls.filter_radius(in_width, in_height, out_width, out_height)
        delta = cls.angular_step(in_width, in_height)
        columns = torch.arange(out_width, device=device, dtype=dtype)
        out = torch.empty((out_height, out_width, channels), device=device, dtype=dtype)

        for oj in range(out_height):
            v = oj / out_height
            extent = cls.kernel_extent(radius, cls.latitude_stretch(v))
            ai_np, aj_np, w_np = cls.kernel_taps(extent)
            ai = torch.tensor(ai_np.copy(), device=device, dtype=dtype)
            aj = torch.tensor(aj_np.copy(), device=device, dtype=dtype)
            weights = torch.tensor(w_np.copy(), device=device, dtype=dtype)
            chunk = cls.calculate_column_chunk(out_width, extent, channels)

            v_t = torch.tensor(v, device=device, dtype=dtype)
            for col_start in range(0, out_width, chunk):
                cols = columns[col_start:col_start + chunk]
                center = cls._torch_to_sphere(cols / out_width, v_t)
                orth0 = cls._torch_orthogonal(center)
                orth1 = torch.linalg.cross(orth0, center, dim=-1)

                displacement = ((delta * ai)[None, :, None] * orth0[:, None, :]
                                + (delta * aj)[None, :, None] * orth1[:, None, :])
                directions = center[:, None, :] + displacement
                directions = directions / directions.norm(dim=-1, keepdim=True)

                x, y, z = directions.unbind(-1)
                u = 0.5 + torch.atan2(z, x) / (2.0 * math.pi)
                tv = torch.acos(torch.clamp(y, -1.0, 1.0)) / math.pi

                ii = torch.remainder(torch.floor(in_width * u).long(), in_width)
                ij = torch.clamp(torch.floor(in_height * tv).long(), 0, in_height - 1)

                samples = src[ij, ii]  # (columns, taps, C)
                out[oj, col_start:col_start + chunk] = torch.tensordot(samples, weights, dims=([1], [0])) / weights.sum()

        return out.to(image.dtype)

    @classmethod
    def torch_geodesic_bands(cls, pixels: np.ndarray, out_width: int, out_height: int,
                             device: torch.device) -> Iterator[Tuple[int, np.ndarray]]:
        image = torch.from_numpy(np.array(pixels, dtype=np.float32)).to(device)
        result = cls.torch_geodesic_gaussian(image, out_width, out_height)
        yield 0, result.to('cpu').numpy().astype(np.float32)

    @staticmethod
    def resolve_device(backend: str) -> Optional[torch.device]:
        """Torch device for the requested backend, or None for the numpy path."""
        if backend == 'cpu':
            return None
        if backend == 'gpu':
            if torch.cuda.is_available():
                return torch.device('cuda')
            print("⚠️ GPU backend requested but CUDA is not available, using CPU")
            return None
        if backend == 'auto':
            return torch.device('cuda') if torch.cuda.is_available() else None
        raise ValueError(f"Unknown backend: {backend}. Use 'auto', 'cpu' or 'gpu'")

    @classmethod
    def iter_bands(cls, pixels: np.ndarray, out_width: int, out_height: int,
                   method: str = ResampleMethod.GEODESIC,
                   backend: str = 'cpu') -> Iterator[Tuple[int, np.ndarray]]:
        method = ResampleMethod(method)
        if method is ResampleMethod.NEAREST:
            return cls.nearest_bands(pixels, out_width, out_height)
        if method is ResampleMethod.BOX:
            return cls.box_bands(pixels, out_width, out_height)

        device = cls.resolve_device(backend)
        if device is not None:
            return cls.torch_geodesic_bands(pixels, out_width, out_height, device)
        return cls.geodesic_bands(pixels, out_width, out_height)

    @classmethod
    def resample_array(cls, pixels: np.ndarray, out_width: int, out_height: int,
                       method: str = ResampleMethod.GEODESIC,
                       backend: str = 'cpu') -> np.ndarray:
        """Resample an (H, W, C) array of any channel count to (out_height, out_width, C)."""
        src = pixels.view()
        src.flags.writeable = False
        result = np.empty((out_height, out_width, pixels.shape[2]), dtype=np.float32)
        for row_start, band in cls.iter_bands(src, out_width, out_height, method, backend):
            result[row_start:row_start + band.shape[0]] = band
        return result

    @classmethod
    def resample(cls, input_image: EquirectangularImage, output_image: EquirectangularImage,
                 method: str = ResampleMethod.GEODESIC, backend: str = 'cpu') -> EquirectangularImage:
        """Fill output_image from input_image with the selected strategy."""
        src = input_image.read_only()
        for row_start, band in cls.iter_bands(src, output_image.width, output_image.height, method, backend):
            output_image.write_rows(row_start, band)
        return output_image


def check_geometry(in_width: int, in_height: int, out_width: int, out_height: int) -> None:
    if out_width < 1 or out_height < 1:
        raise GeometryError(f"output {out_width}x{out_height} must have positive dimensions")
    if in_width < out_width or in_height < out_height:
        raise GeometryError(
            f"output {out_width}x{out_height} must be smaller or equal to input {in_width}x{in_height}"
        )


def downsample_image(input_image: EquirectangularImage,
                     output_width: int,
                     output_height: int,
                     method: str = ResampleMethod.GEODESIC,
                     backend: str = 'cpu',
                     name: str = OUTPUT_PATH) -> EquirectangularImage:
    """Validate the requested size and downsample input_image into a new image.

    Raises:
        GeometryError: output is empty or larger than the input in either axis.
    """
    check_geometry(input_image.width, input_image.height, output_width, output_height)
    output_image = EquirectangularImage(name, output_width, output_height)
    return EquirectangularResampler.resample(input_image, output_image, method, backend)
